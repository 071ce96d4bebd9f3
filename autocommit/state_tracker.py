"""Tracked commit state per monitored repository."""

from datetime import datetime
from typing import Optional, Tuple

from .models import CommitInfo, MonitoredRepository


def observe(repo: MonitoredRepository) -> Tuple[Optional[str], Optional[str]]:
    """Return the tracked (sha, author) pair. Pure read."""
    return repo.last_commit_sha, repo.last_commit_author


def commit(
    repo: MonitoredRepository,
    latest: Optional[CommitInfo],
    checked_at: datetime
) -> None:
    """Store the newest fetched commit and the time of this check.

    Runs on every cycle that fetched commits, whether or not anything changed.
    A repo with no commits keeps its sha and author.
    """
    if latest is not None:
        repo.last_commit_sha = latest.sha
        repo.last_commit_author = latest.author
    repo.last_checked_at = checked_at


def record_auto_commit(repo: MonitoredRepository) -> None:
    """Count one successful compensating write."""
    repo.auto_commit_count += 1
