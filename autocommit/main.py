"""Command line entry point for the commit keep-alive service."""

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from .exceptions import (
    AutoCommitError,
    ConfigurationError,
    TriggerUnauthorized,
    Unauthenticated,
)
from .github_client import timeout_from_env
from .rate_limiter import FixedWindowRateLimiter, PostgresRateLimiter, RateLimiter
from .reconciler import Reconciler
from .subject_store import store_from_env
from .subjects import SubjectService


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)]
    )


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_json(result: Any) -> str:
    """Serialize a result dataclass (or a list of them) for stdout."""
    if is_dataclass(result):
        data = asdict(result)
    elif isinstance(result, list):
        data = [asdict(item) if is_dataclass(item) else item for item in result]
    else:
        data = result
    return json.dumps(data, indent=2, default=_json_default)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Keep repo activity alive after collaborator commits"
    )
    parser.add_argument(
        "--state-file",
        default=None,
        help="JSON subject store (default: $AUTOCOMMIT_STATE_FILE or state/subjects.json)"
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="PostgreSQL URL for the subject store (default: $AUTOCOMMIT_DB_URL)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    register = commands.add_parser("register", help="Register a GitHub token")
    register.add_argument("--token", default=os.environ.get("GITHUB_TOKEN"))

    for name, help_text in (("add-repo", "Start monitoring a repo"),
                            ("remove-repo", "Stop monitoring a repo")):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("--subject", required=True)
        sub.add_argument("--owner", required=True)
        sub.add_argument("--repo", required=True)

    monitoring = commands.add_parser("monitoring", help="Toggle background monitoring")
    monitoring.add_argument("--subject", required=True)
    toggle = monitoring.add_mutually_exclusive_group(required=True)
    toggle.add_argument("--enable", dest="enabled", action="store_true")
    toggle.add_argument("--disable", dest="enabled", action="store_false")
    monitoring.add_argument("--poll-interval-ms", type=int, default=None)

    repo_active = commands.add_parser("repo-active", help="Pause or resume checks for one repo")
    repo_active.add_argument("--subject", required=True)
    repo_active.add_argument("--owner", required=True)
    repo_active.add_argument("--repo", required=True)
    state = repo_active.add_mutually_exclusive_group(required=True)
    state.add_argument("--enable", dest="active", action="store_true")
    state.add_argument("--disable", dest="active", action="store_false")

    show_activity = commands.add_parser("activity", help="Show the activity log")
    show_activity.add_argument("--subject", required=True)

    clear_activity = commands.add_parser("clear-activity", help="Empty the activity log")
    clear_activity.add_argument("--subject", required=True)

    available = commands.add_parser("available", help="List repos not yet monitored")
    available.add_argument("--subject", required=True)

    check = commands.add_parser("check", help="Run one check cycle for a subject")
    check.add_argument("--subject", default=None)

    sweep = commands.add_parser("sweep", help="Check every monitoring-enabled subject")
    sweep.add_argument(
        "--secret",
        default=os.environ.get("SWEEP_TRIGGER_SECRET"),
        help="Shared secret presented to the sweep trigger"
    )
    return parser


def build_rate_limiter(db_url: Optional[str]) -> RateLimiter:
    if db_url:
        return PostgresRateLimiter(db_url)
    return FixedWindowRateLimiter()


def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    db_url = args.db_url or os.environ.get("AUTOCOMMIT_DB_URL")
    store = store_from_env(db_url, args.state_file)
    service = SubjectService(store, timeout=timeout_from_env())
    reconciler = Reconciler.from_env(store, rate_limiter=build_rate_limiter(db_url))

    try:
        if args.command == "register":
            subject = service.register(args.token or "")
            result = {"success": True, "subjectId": subject.subject_id}
        elif args.command == "add-repo":
            result = service.add_repository(args.subject, args.owner, args.repo)
        elif args.command == "remove-repo":
            service.remove_repository(args.subject, args.owner, args.repo)
            result = {"success": True, "message": "Repository removed"}
        elif args.command == "monitoring":
            subject = service.set_monitoring(args.subject, args.enabled, args.poll_interval_ms)
            result = {
                "success": True,
                "isMonitoringEnabled": subject.is_monitoring_enabled,
                "pollInterval": subject.poll_interval_ms
            }
        elif args.command == "repo-active":
            repo = service.set_repository_active(args.subject, args.owner, args.repo, args.active)
            result = {"success": True, "repo": repo.full_name, "isActive": repo.is_active}
        elif args.command == "activity":
            result = service.get_activity(args.subject)
        elif args.command == "clear-activity":
            service.clear_activity(args.subject)
            result = {"success": True, "message": "Activity log cleared"}
        elif args.command == "available":
            result = service.available_repositories(args.subject)
        elif args.command == "check":
            cycle = reconciler.run_check_cycle(args.subject)
            result = {"success": True, **asdict(cycle)}
        else:
            result = reconciler.run_authorized_sweep(args.secret)
    except (ConfigurationError, TriggerUnauthorized, Unauthenticated) as e:
        logger.error(f"{args.command} refused: {e}")
        return 2
    except AutoCommitError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    print(to_json(result))
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
