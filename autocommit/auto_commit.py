"""Keep-alive README writes made after a collaborator's commit."""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from .exceptions import ExecutionError, FetchError, WriteFailed
from .github_client import GitHubClient
from .models import ExecutionResult, TrackedFile


TERMINATOR = "."
MARKER_TEMPLATE = "<!-- AutoCommit: {timestamp} -->"
MARKER_PATTERN = re.compile(r"<!-- AutoCommit: .*? -->")


def iso_timestamp(now: Optional[datetime] = None) -> str:
    """UTC timestamp like 2024-05-01T12:00:00.000Z."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _terminate(text: str) -> str:
    """End the last non-empty line with TERMINATOR, keeping trailing newlines."""
    stripped = text.rstrip("\n")
    if not stripped or stripped.endswith(TERMINATOR):
        return text
    return stripped + TERMINATOR + text[len(stripped):]


def apply_keepalive(content: str, timestamp: str) -> str:
    """Return README content carrying exactly one marker with ``timestamp``.

    An existing marker is replaced where it stands; otherwise one is appended
    on its own line. The text before the marker always ends with TERMINATOR.
    """
    marker = MARKER_TEMPLATE.format(timestamp=timestamp)

    match = MARKER_PATTERN.search(content)
    if match:
        head = _terminate(content[:match.start()])
        return head + marker + content[match.end():]

    body = _terminate(content)
    if body and not body.endswith("\n"):
        body += "\n"
    return body + marker


class AutoCommitExecutor:
    """Read-modify-write of the README with a freshly fetched sha."""

    def __init__(self, client: GitHubClient):
        self.client = client
        self.logger = logging.getLogger(__name__)

    def _read(self, owner: str, repo: str) -> TrackedFile:
        try:
            readme = self.client.get_readme(owner, repo)
        except FetchError as e:
            raise ExecutionError("Could not fetch README") from e
        if readme is None:
            raise ExecutionError("Could not fetch README")
        return readme

    def perform(
        self,
        owner: str,
        repo: str,
        now: Optional[datetime] = None
    ) -> ExecutionResult:
        try:
            readme = self._read(owner, repo)
        except ExecutionError as e:
            self.logger.warning(f"{owner}/{repo}: {e}")
            return ExecutionResult(success=False, message=str(e))

        timestamp = iso_timestamp(now)
        new_content = apply_keepalive(readme.content, timestamp)

        try:
            # The sha from the first read may be stale by now.
            latest = self._read(owner, repo)
            self.client.update_file(
                owner,
                repo,
                latest.path,
                new_content,
                latest.sha,
                f"Auto-commit: {timestamp}"
            )
        except ExecutionError as e:
            self.logger.warning(f"{owner}/{repo}: README vanished before write")
            return ExecutionResult(success=False, message=f"Failed to update README: {e}")
        except WriteFailed as e:
            self.logger.warning(f"{owner}/{repo}: auto-commit rejected: {e}")
            return ExecutionResult(success=False, message=f"Failed to update README: {e}")

        self.logger.info(f"{owner}/{repo}: auto-commit written at {timestamp}")
        return ExecutionResult(success=True, message="README updated successfully")
