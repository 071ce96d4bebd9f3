"""GitHub API client with rate limiting, retries and per-call timeouts."""

import base64
import binascii
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

import requests

from .exceptions import FetchError, WriteConflict, WriteFailed
from .models import CommitInfo, GitHubUser, RepoInfo, TrackedFile


DEFAULT_TIMEOUT = 10.0


def timeout_from_env() -> float:
    """Per-call timeout in seconds from AUTOCOMMIT_HTTP_TIMEOUT."""
    return float(os.environ.get("AUTOCOMMIT_HTTP_TIMEOUT", DEFAULT_TIMEOUT))


class GitHubClient:
    """Handles GitHub API interactions for a single user's token."""

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        max_rate_limit_sleep: float = 60.0
    ):
        if not token:
            raise ValueError("GitHub token required")
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_rate_limit_sleep = max_rate_limit_sleep
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28"
        })
        self.rate_limit_remaining = 5000
        self.rate_limit_reset: Optional[datetime] = None
        self.logger = logging.getLogger(__name__)

    def _handle_rate_limit(self, response: requests.Response) -> None:
        """Update rate limit tracking from response headers."""
        self.rate_limit_remaining = int(
            response.headers.get("X-RateLimit-Remaining", 5000)
        )
        reset_timestamp = response.headers.get("X-RateLimit-Reset")
        if reset_timestamp:
            self.rate_limit_reset = datetime.fromtimestamp(
                int(reset_timestamp), tz=timezone.utc
            )

        if self.rate_limit_remaining < 100:
            if self.rate_limit_reset:
                sleep_time = (
                    self.rate_limit_reset - datetime.now(timezone.utc)
                ).total_seconds()
                if sleep_time > 0:
                    self.logger.warning(
                        f"Rate limit low ({self.rate_limit_remaining}). "
                        f"Sleeping {min(sleep_time, self.max_rate_limit_sleep):.0f}s"
                    )
                    time.sleep(min(sleep_time, self.max_rate_limit_sleep))

    def _request(
        self,
        method: str,
        url: str,
        **kwargs: Any
    ) -> requests.Response:
        """Make a read request with retry logic.

        Returns the response for any status the caller has to interpret
        (2xx, 401, 404, 409). Raises FetchError once retries run out.
        """
        if not url.startswith("http"):
            url = f"{self.BASE_URL}{url}"

        last_error = "no response"
        for attempt in range(self.max_retries):
            try:
                response = self.session.request(
                    method, url, timeout=self.timeout, **kwargs
                )
                self._handle_rate_limit(response)

                if response.status_code < 300 or response.status_code in (401, 404, 409):
                    return response
                elif response.status_code == 403:
                    if "rate limit" in response.text.lower():
                        last_error = "rate limited"
                        continue
                    raise FetchError(f"Access denied: {url}")
                elif response.status_code >= 500:
                    last_error = f"server error {response.status_code}"
                    time.sleep(2 ** attempt)
                    continue
                else:
                    raise FetchError(
                        f"Request failed ({response.status_code}): {url}"
                    )

            except requests.RequestException as e:
                self.logger.warning(f"Request exception: {e}")
                last_error = str(e)
                time.sleep(2 ** attempt)

        raise FetchError(f"Request to {url} failed after {self.max_retries} attempts: {last_error}")

    def _paginate(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None
    ) -> Generator[Dict[str, Any], None, None]:
        """Generator that handles pagination automatically."""
        params = params or {}
        params.setdefault("per_page", 100)

        while url:
            response = self._request("GET", url, params=params)
            if response.status_code >= 300:
                break

            data = response.json()
            if isinstance(data, list):
                yield from data
            else:
                yield data
                break

            url = None
            link_header = response.headers.get("Link", "")
            for link in link_header.split(","):
                if 'rel="next"' in link:
                    url = link.split(";")[0].strip("<> ")
                    params = {}
                    break

    def get_authenticated_user(self) -> Optional[GitHubUser]:
        """Validate the token. Returns None when GitHub rejects it."""
        response = self._request("GET", "/user")
        if response.status_code != 200:
            return None
        data = response.json()
        return GitHubUser(
            login=data["login"],
            id=data["id"],
            avatar_url=data.get("avatar_url") or "",
            name=data.get("name")
        )

    def get_repository(self, owner: str, repo: str) -> Optional[RepoInfo]:
        """Check that a repo exists and the token can see it."""
        response = self._request("GET", f"/repos/{owner}/{repo}")
        if response.status_code != 200:
            return None
        return self._repo_info(response.json())

    def list_user_repositories(self) -> List[RepoInfo]:
        """All repos the user owns or collaborates on, most recently updated first."""
        return [
            self._repo_info(data)
            for data in self._paginate("/user/repos", {"sort": "updated"})
        ]

    def list_recent_commits(
        self,
        owner: str,
        repo: str,
        limit: int = 5
    ) -> List[CommitInfo]:
        """Newest commits on the default branch.

        An empty repository comes back from GitHub as 409; both that and a
        missing repo yield an empty list.
        """
        response = self._request(
            "GET", f"/repos/{owner}/{repo}/commits", params={"per_page": limit}
        )
        if response.status_code in (404, 409):
            self.logger.debug(f"No commits for {owner}/{repo} ({response.status_code})")
            return []
        if response.status_code != 200:
            raise FetchError(
                f"Could not list commits for {owner}/{repo} ({response.status_code})"
            )

        commits = []
        for data in response.json():
            git_author = data.get("commit", {}).get("author") or {}
            login = (data.get("author") or {}).get("login")
            commits.append(CommitInfo(
                sha=data["sha"],
                author=login or git_author.get("name") or "Unknown",
                message=data.get("commit", {}).get("message", ""),
                date=git_author.get("date") or datetime.now(timezone.utc).isoformat()
            ))
        return commits

    def get_readme(self, owner: str, repo: str) -> Optional[TrackedFile]:
        """Fetch the README with its current blob sha."""
        response = self._request("GET", f"/repos/{owner}/{repo}/readme")
        if response.status_code != 200:
            return None

        data = response.json()
        if "content" not in data:
            return None
        try:
            content = base64.b64decode(data["content"]).decode("utf-8")
        except (binascii.Error, ValueError) as e:
            raise FetchError(f"README of {owner}/{repo} is not UTF-8 text: {e}") from e
        return TrackedFile(
            content=content,
            sha=data["sha"],
            path=data.get("path", "README.md")
        )

    def update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        sha: str,
        message: str
    ) -> None:
        """Write a file using sha as the concurrency token. Never retried."""
        url = f"{self.BASE_URL}/repos/{owner}/{repo}/contents/{path}"
        payload = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "sha": sha
        }

        try:
            response = self.session.put(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise WriteFailed(f"Network error writing {path}: {e}") from e
        self._handle_rate_limit(response)

        if response.status_code in (200, 201):
            return
        if response.status_code in (409, 422):
            raise WriteConflict(f"Stale sha for {path} ({response.status_code})")
        if response.status_code in (401, 403):
            raise WriteFailed(f"Permission denied writing {path}")
        raise WriteFailed(f"Write of {path} failed ({response.status_code})")

    @staticmethod
    def _repo_info(data: Dict[str, Any]) -> RepoInfo:
        return RepoInfo(
            owner=data["owner"]["login"],
            name=data["name"],
            full_name=data["full_name"],
            private=data.get("private", False),
            description=data.get("description")
        )
