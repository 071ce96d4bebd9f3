"""Runs commit checks and keep-alive writes across monitored repos.

Two entry points share the same per-subject cycle:

- ``run_check_cycle`` checks one subject on request.
- ``run_sweep`` checks every subject with monitoring enabled, using a bounded
  worker pool.

A failing repo never stops the rest of its subject's repos, and a failing
subject never stops the sweep. Each subject's document is saved once per cycle.
"""

import hmac
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from . import activity, state_tracker
from .auto_commit import AutoCommitExecutor
from .change_detector import (
    COMMIT_FETCH_WINDOW,
    ChangeDetector,
    compensate_first_observation_from_env,
)
from .exceptions import (
    ConfigurationError,
    CredentialError,
    CredentialInvalid,
    RateLimitExceeded,
    SubjectNotFound,
    TriggerUnauthorized,
    Unauthenticated,
)
from .github_client import DEFAULT_TIMEOUT, GitHubClient, timeout_from_env
from .models import (
    SYSTEM_REPO_MARKER,
    ActivityAction,
    CheckCycleResult,
    MonitoredRepository,
    MonitoringSubject,
    RepoCheckResult,
    SubjectSweepResult,
    SweepResult,
)
from .rate_limiter import RateLimiter
from .subject_store import SubjectStore


DEFAULT_MAX_WORKERS = 4

ClientFactory = Callable[[str], GitHubClient]


def passthrough_decrypt(credential: str) -> str:
    """Default credential hook for tokens stored without encryption."""
    if not credential:
        raise CredentialError("No stored credential")
    return credential


def authorize_trigger(presented: Optional[str], expected: Optional[str] = None) -> None:
    """Check the shared secret sent by the periodic trigger."""
    expected = expected if expected is not None else os.environ.get("CRON_SECRET_KEY")
    if not expected:
        raise ConfigurationError("CRON_SECRET_KEY not configured")
    if not presented or not hmac.compare_digest(presented, expected):
        raise TriggerUnauthorized("Unauthorized")


class Reconciler:
    """Owns the check cycle for every subject in a store."""

    def __init__(
        self,
        store: SubjectStore,
        client_factory: Optional[ClientFactory] = None,
        decrypt_token: Callable[[str], str] = passthrough_decrypt,
        rate_limiter: Optional[RateLimiter] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        timeout: float = DEFAULT_TIMEOUT,
        compensate_first_observation: bool = True,
        commit_fetch_window: int = COMMIT_FETCH_WINDOW
    ):
        self.store = store
        self.client_factory = client_factory or (
            lambda token: GitHubClient(token, timeout=timeout)
        )
        self.decrypt_token = decrypt_token
        self.rate_limiter = rate_limiter
        self.max_workers = max_workers
        self.compensate_first_observation = compensate_first_observation
        self.commit_fetch_window = commit_fetch_window
        self._locks: Dict[str, List[Any]] = {}
        self._locks_guard = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_env(
        cls,
        store: SubjectStore,
        rate_limiter: Optional[RateLimiter] = None
    ) -> "Reconciler":
        return cls(
            store,
            rate_limiter=rate_limiter,
            max_workers=int(os.environ.get("AUTOCOMMIT_MAX_WORKERS", DEFAULT_MAX_WORKERS)),
            timeout=timeout_from_env(),
            compensate_first_observation=compensate_first_observation_from_env()
        )

    @contextmanager
    def _subject_lock(self, subject_id: str) -> Iterator[None]:
        """Serialize cycles for one subject within this process.

        Each entry counts its holders and waiters and is dropped when the
        last one leaves, so the table only holds subjects in flight.
        """
        with self._locks_guard:
            entry = self._locks.setdefault(subject_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[subject_id]

    def _credential(self, subject: MonitoringSubject) -> str:
        try:
            return self.decrypt_token(subject.credential)
        except CredentialError:
            raise
        except Exception as e:
            raise CredentialError(f"Token decryption failed: {e}") from e

    def check_repository(
        self,
        client: GitHubClient,
        detector: ChangeDetector,
        repo: MonitoredRepository
    ) -> RepoCheckResult:
        """Check one repo, write a keep-alive commit if needed, update its state."""
        result = RepoCheckResult(repo=repo.full_name)

        try:
            tracked_sha, _ = state_tracker.observe(repo)
            commits = client.list_recent_commits(
                repo.owner, repo.name, self.commit_fetch_window
            )
            check = detector.detect(tracked_sha, commits)

            if check.has_new:
                result.new_commit = True
                if check.is_from_other:
                    result.auto_commit_triggered = True
                    outcome = AutoCommitExecutor(client).perform(repo.owner, repo.name)
                    result.auto_commit_success = outcome.success
                    result.message = outcome.message
                    if outcome.success:
                        state_tracker.record_auto_commit(repo)
                else:
                    result.message = "New commit is from current user, skipping auto-commit"
            else:
                result.message = "No new commits"

            state_tracker.commit(repo, check.latest_commit, datetime.now(timezone.utc))
        except Exception as e:
            self.logger.warning(f"Error checking {repo.full_name}: {e}")
            result.checked = False
            result.error = str(e)
            result.message = f"Error checking repo: {e}"

        return result

    def _record_outcome(self, subject: MonitoringSubject, result: RepoCheckResult) -> None:
        if result.auto_commit_triggered:
            action = (
                ActivityAction.AUTO_COMMIT_SUCCESS if result.auto_commit_success
                else ActivityAction.AUTO_COMMIT_FAILED
            )
            activity.record(subject, result.repo, action, result.message, result.auto_commit_success)
        elif result.new_commit:
            activity.record(subject, result.repo, ActivityAction.COMMIT_DETECTED, result.message, True)

    def _run_cycle(
        self,
        subject: MonitoringSubject,
        token: str,
        cancel: Optional[threading.Event] = None
    ) -> CheckCycleResult:
        """Check every active repo in order, then save the subject once."""
        client = self.client_factory(token)
        detector = ChangeDetector(
            subject.owner_identity,
            compensate_first_observation=self.compensate_first_observation
        )

        results = []
        cancelled = False
        for repo in subject.active_repositories():
            if cancel is not None and cancel.is_set():
                self.logger.info(
                    f"Cycle for {subject.subject_id} cancelled after {len(results)} repos"
                )
                cancelled = True
                break
            result = self.check_repository(client, detector, repo)
            self._record_outcome(subject, result)
            results.append(result)

        self.store.save(subject)

        triggered = sum(1 for r in results if r.auto_commit_triggered)
        self.logger.info(
            f"Checked {len(results)} repos for {subject.subject_id}, "
            f"{triggered} auto-commits triggered"
        )
        return CheckCycleResult(
            timestamp=datetime.now(timezone.utc),
            results=results,
            cancelled=cancelled
        )

    def run_check_cycle(
        self,
        subject_id: Optional[str],
        cancel: Optional[threading.Event] = None
    ) -> CheckCycleResult:
        """On-demand check of one subject's repos.

        Raises Unauthenticated, RateLimitExceeded, SubjectNotFound or
        CredentialInvalid. Per-repo failures are returned as results.
        Setting ``cancel`` stops the cycle before the next repo; a repo
        already being checked always finishes.
        """
        if not subject_id:
            raise Unauthenticated("Unauthorized. Please log in again.")

        if self.rate_limiter is not None and not self.rate_limiter.allow(f"poll_{subject_id}"):
            raise RateLimitExceeded("Too many requests. Slow down polling.")

        with self._subject_lock(subject_id):
            subject = self.store.get(subject_id)
            if subject is None:
                raise SubjectNotFound(f"User not found: {subject_id}")

            try:
                token = self._credential(subject)
            except CredentialError as e:
                raise CredentialInvalid(
                    "Token decryption failed. Please re-authenticate."
                ) from e

            return self._run_cycle(subject, token, cancel)

    def _sweep_subject(self, listed: MonitoringSubject) -> SubjectSweepResult:
        result = SubjectSweepResult(user=listed.owner_identity)

        try:
            with self._subject_lock(listed.subject_id):
                # Reload under the lock so an on-demand cycle that ran since
                # the sweep started is not overwritten.
                subject = self.store.get(listed.subject_id)
                if subject is None or not subject.is_monitoring_enabled:
                    self.logger.info(f"Skipping {listed.subject_id}: no longer monitored")
                    return result

                try:
                    token = self._credential(subject)
                except CredentialError as e:
                    self.logger.error(f"Credential failure for {subject.subject_id}: {e}")
                    result.errors.append("Token decryption failed")
                    activity.record(
                        subject, SYSTEM_REPO_MARKER, ActivityAction.POLL_ERROR,
                        "Token decryption failed", False
                    )
                    self.store.save(subject)
                    return result

                cycle = self._run_cycle(subject, token)
        except Exception as e:
            self.logger.error(f"Sweep failed for {listed.subject_id}: {e}")
            result.errors.append(f"User error: {e}")
            return result

        result.repos_checked = len(cycle.results)
        for repo_result in cycle.results:
            if repo_result.auto_commit_triggered:
                result.auto_commits_triggered += 1
            if repo_result.auto_commit_success:
                result.auto_commits_successful += 1
            if repo_result.error is not None:
                result.errors.append(f"{repo_result.repo}: {repo_result.error}")
        return result

    def run_sweep(self) -> SweepResult:
        """Check every monitoring-enabled subject.

        Only a store that cannot list subjects makes this raise.
        """
        subjects = self.store.list_monitoring_enabled()
        if not subjects:
            self.logger.info("No users with monitoring enabled")

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            results = list(pool.map(self._sweep_subject, subjects))

        total_auto_commits = sum(r.auto_commits_successful for r in results)
        self.logger.info(
            f"Sweep done: {len(subjects)} users, {total_auto_commits} auto-commits"
        )
        return SweepResult(
            timestamp=datetime.now(timezone.utc),
            users_processed=len(subjects),
            total_auto_commits=total_auto_commits,
            results=results
        )

    def run_authorized_sweep(
        self,
        presented_secret: Optional[str],
        expected_secret: Optional[str] = None
    ) -> SweepResult:
        authorize_trigger(presented_secret, expected_secret)
        return self.run_sweep()
