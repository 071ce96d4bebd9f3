"""Managing a subject's monitored repos and monitoring settings."""

import logging
import re
from datetime import datetime, timezone
from typing import Callable, List, Optional

from . import activity
from .exceptions import (
    AutoCommitError,
    CredentialInvalid,
    DuplicateRepository,
    NotFoundError,
    SubjectNotFound,
    ValidationError,
)
from .github_client import DEFAULT_TIMEOUT, GitHubClient
from .models import (
    SYSTEM_REPO_MARKER,
    ActivityAction,
    ActivityLogEntry,
    MonitoredRepository,
    MonitoringSubject,
    RepoInfo,
)
from .reconciler import ClientFactory, passthrough_decrypt
from .subject_store import SubjectStore


MIN_POLL_INTERVAL_MS = 10000
MAX_POLL_INTERVAL_MS = 300000

TOKEN_PATTERN = re.compile(r"^(ghp_|gho_|ghu_|ghs_|ghr_)[a-zA-Z0-9]{36,}$")
REPO_PART_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")


def sanitize_input(value: str) -> str:
    """Strip, drop HTML-ish characters and cap the length."""
    return re.sub(r"[<>\"'&]", "", value.strip())[:1000]


def is_valid_token_format(token: str) -> bool:
    return bool(TOKEN_PATTERN.match(token))


def is_valid_repo_format(owner: str, name: str) -> bool:
    return (
        0 < len(owner) <= 39
        and 0 < len(name) <= 100
        and bool(REPO_PART_PATTERN.match(owner))
        and bool(REPO_PART_PATTERN.match(name))
    )


class SubjectService:
    """Registration and repo management on top of a SubjectStore."""

    def __init__(
        self,
        store: SubjectStore,
        client_factory: Optional[ClientFactory] = None,
        decrypt_token: Callable[[str], str] = passthrough_decrypt,
        encrypt_token: Callable[[str], str] = lambda token: token,
        timeout: float = DEFAULT_TIMEOUT
    ):
        self.store = store
        self.client_factory = client_factory or (
            lambda token: GitHubClient(token, timeout=timeout)
        )
        self.decrypt_token = decrypt_token
        self.encrypt_token = encrypt_token
        self.logger = logging.getLogger(__name__)

    def _subject(self, subject_id: str) -> MonitoringSubject:
        subject = self.store.get(subject_id)
        if subject is None:
            raise SubjectNotFound(f"User not found: {subject_id}")
        return subject

    def _client(self, subject: MonitoringSubject) -> GitHubClient:
        try:
            token = self.decrypt_token(subject.credential)
        except Exception as e:
            raise CredentialInvalid("Token decryption failed. Please re-authenticate.") from e
        return self.client_factory(token)

    def register(self, token: str) -> MonitoringSubject:
        """Create the subject for a token's owner, or refresh its stored token."""
        token = token.strip()
        if not is_valid_token_format(token):
            raise ValidationError("Invalid GitHub token format")

        user = self.client_factory(token).get_authenticated_user()
        if user is None:
            raise CredentialInvalid("GitHub rejected the token")

        subject = self.store.get(user.login)
        if subject is None:
            subject = MonitoringSubject(
                subject_id=user.login,
                owner_identity=user.login,
                credential=self.encrypt_token(token)
            )
            self.logger.info(f"Registered new subject {user.login}")
        else:
            subject.credential = self.encrypt_token(token)
            self.logger.info(f"Refreshed credential for {user.login}")

        self.store.save(subject)
        return subject

    def add_repository(self, subject_id: str, owner: str, name: str) -> MonitoredRepository:
        owner = sanitize_input(owner or "")
        name = sanitize_input(name or "")
        if not owner or not name:
            raise ValidationError("Owner and repo are required")
        if not is_valid_repo_format(owner, name):
            raise ValidationError("Invalid repository format")

        subject = self._subject(subject_id)
        if subject.find_repository(owner, name) is not None:
            raise DuplicateRepository(f"{owner}/{name} is already being monitored")

        client = self._client(subject)
        info = client.get_repository(owner, name)
        if info is None:
            raise NotFoundError(f"Repository {owner}/{name} not found or no access")
        if subject.find_repository(info.owner, info.name) is not None:
            raise DuplicateRepository(f"{info.full_name} is already being monitored")

        # Seed from the newest commit so adding a repo is not itself a change.
        commits = client.list_recent_commits(info.owner, info.name, limit=1)
        repo = MonitoredRepository(
            owner=info.owner,
            name=info.name,
            last_commit_sha=commits[0].sha if commits else None,
            last_commit_author=commits[0].author if commits else None,
            last_checked_at=datetime.now(timezone.utc)
        )
        subject.repositories.append(repo)
        activity.record(
            subject, repo.full_name, ActivityAction.REPOSITORY_ADDED,
            f"Now monitoring {repo.full_name}", True
        )
        self.store.save(subject)
        return repo

    def remove_repository(self, subject_id: str, owner: str, name: str) -> None:
        owner = sanitize_input(owner or "")
        name = sanitize_input(name or "")
        if not owner or not name:
            raise ValidationError("Owner and repo are required")

        subject = self._subject(subject_id)
        repo = subject.find_repository(owner, name)
        if repo is None:
            raise NotFoundError(f"Repository {owner}/{name} not found")

        subject.repositories.remove(repo)
        activity.record(
            subject, repo.full_name, ActivityAction.REPOSITORY_REMOVED,
            f"Stopped monitoring {repo.full_name}", True
        )
        self.store.save(subject)

    def set_monitoring(
        self,
        subject_id: str,
        enabled: bool,
        poll_interval_ms: Optional[int] = None
    ) -> MonitoringSubject:
        """Turn background monitoring on or off.

        Poll intervals outside 10s to 5min are ignored.
        """
        subject = self._subject(subject_id)
        subject.is_monitoring_enabled = enabled
        if poll_interval_ms is not None and (
            MIN_POLL_INTERVAL_MS <= poll_interval_ms <= MAX_POLL_INTERVAL_MS
        ):
            subject.poll_interval_ms = poll_interval_ms

        action = ActivityAction.MONITORING_ENABLED if enabled else ActivityAction.MONITORING_DISABLED
        message = (
            "Background monitoring enabled. It will continue even when you log out."
            if enabled else "Background monitoring disabled."
        )
        activity.record(subject, SYSTEM_REPO_MARKER, action, message, True)

        try:
            self.store.save(subject)
        except AutoCommitError as e:
            self.logger.error(f"Monitoring toggle failed for {subject_id}: {e}")
            self._record_toggle_failure(subject_id, str(e))
            raise
        return subject

    def _record_toggle_failure(self, subject_id: str, reason: str) -> None:
        try:
            subject = self._subject(subject_id)
            activity.record(
                subject, SYSTEM_REPO_MARKER, ActivityAction.MONITORING_TOGGLE_FAILED,
                reason, False
            )
            self.store.save(subject)
        except AutoCommitError as e:
            self.logger.error(f"Could not record toggle failure for {subject_id}: {e}")

    def set_repository_active(
        self,
        subject_id: str,
        owner: str,
        name: str,
        active: bool
    ) -> MonitoredRepository:
        """Pause or resume checks for one repo without forgetting its state."""
        owner = sanitize_input(owner or "")
        name = sanitize_input(name or "")
        if not owner or not name:
            raise ValidationError("Owner and repo are required")

        subject = self._subject(subject_id)
        repo = subject.find_repository(owner, name)
        if repo is None:
            raise NotFoundError(f"Repository {owner}/{name} not found")

        repo.is_active = active
        self.store.save(subject)
        self.logger.info(f"{repo.full_name} {'resumed' if active else 'paused'} for {subject_id}")
        return repo

    def get_activity(self, subject_id: str) -> List[ActivityLogEntry]:
        return list(self._subject(subject_id).activity_log)

    def clear_activity(self, subject_id: str) -> None:
        subject = self._subject(subject_id)
        subject.activity_log.clear()
        self.store.save(subject)

    def available_repositories(self, subject_id: str) -> List[RepoInfo]:
        """Host repos the subject can access but does not monitor yet."""
        subject = self._subject(subject_id)
        return [
            info for info in self._client(subject).list_user_repositories()
            if subject.find_repository(info.owner, info.name) is None
        ]
