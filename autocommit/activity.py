"""Bounded, most-recent-first activity log."""

from datetime import datetime, timezone
from typing import Optional

from .models import ActivityAction, ActivityLogEntry, MonitoringSubject


MAX_ACTIVITY_ENTRIES = 50


def record(
    subject: MonitoringSubject,
    repo: str,
    action: ActivityAction,
    message: str,
    success: bool,
    timestamp: Optional[datetime] = None
) -> ActivityLogEntry:
    """Put a new entry at the head of the log, dropping anything past the cap."""
    entry = ActivityLogEntry(
        repo=repo,
        action=action,
        message=message,
        success=success,
        timestamp=timestamp or datetime.now(timezone.utc)
    )
    subject.activity_log.insert(0, entry)
    del subject.activity_log[MAX_ACTIVITY_ENTRIES:]
    return entry
