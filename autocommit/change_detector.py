"""Decide whether a repo has a new commit and who made it."""

import logging
import os
from typing import List, Optional

from .models import CommitCheck, CommitInfo


COMMIT_FETCH_WINDOW = 5


def compensate_first_observation_from_env() -> bool:
    value = os.environ.get("AUTOCOMMIT_COMPENSATE_FIRST_OBSERVATION", "true")
    return value.strip().lower() not in ("0", "false", "no", "off")


class ChangeDetector:
    """Compares tracked state against the newest commit on the host.

    ``compensate_first_observation`` controls a repo seen for the first time
    (no tracked sha). When True the first visible commit counts as coming from
    another author if it does; when False the first observation only seeds
    the tracked state.
    """

    def __init__(self, owner_identity: str, compensate_first_observation: bool = True):
        self.owner_identity = owner_identity
        self.compensate_first_observation = compensate_first_observation
        self.logger = logging.getLogger(__name__)

    def detect(
        self,
        tracked_sha: Optional[str],
        commits: List[CommitInfo]
    ) -> CommitCheck:
        if not commits:
            return CommitCheck(has_new=False, latest_commit=None, is_from_other=False)

        latest = commits[0]
        is_from_other = latest.author != self.owner_identity

        if tracked_sha is None:
            self.logger.debug(f"First observation of {latest.sha} by {latest.author}")
            return CommitCheck(
                has_new=True,
                latest_commit=latest,
                is_from_other=is_from_other and self.compensate_first_observation
            )

        if latest.sha != tracked_sha:
            return CommitCheck(has_new=True, latest_commit=latest, is_from_other=is_from_other)

        return CommitCheck(has_new=False, latest_commit=latest, is_from_other=False)
