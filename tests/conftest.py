"""Shared fixtures: an in-memory GitHub double and a file-backed store."""

from typing import Dict, List, Optional

import pytest

from autocommit.models import (
    CommitInfo,
    GitHubUser,
    MonitoredRepository,
    MonitoringSubject,
    RepoInfo,
    TrackedFile,
)
from autocommit.subject_store import JsonSubjectStore


class FakeGitHubClient:
    """Stands in for GitHubClient; keyed by "owner/name"."""

    def __init__(self):
        self.commits: Dict[str, List[CommitInfo]] = {}
        self.readmes: Dict[str, TrackedFile] = {}
        self.repo_infos: Dict[str, RepoInfo] = {}
        self.list_errors: Dict[str, Exception] = {}
        self.write_error: Optional[Exception] = None
        self.user: Optional[GitHubUser] = None
        self.writes: List[dict] = []

    def push(self, full_name: str, sha: str, author: str, message: str = "change") -> None:
        self.commits.setdefault(full_name, []).insert(
            0, CommitInfo(sha=sha, author=author, message=message, date="2024-01-01T00:00:00Z")
        )

    def list_recent_commits(self, owner, repo, limit=5):
        key = f"{owner}/{repo}"
        if key in self.list_errors:
            raise self.list_errors[key]
        return self.commits.get(key, [])[:limit]

    def get_readme(self, owner, repo):
        return self.readmes.get(f"{owner}/{repo}")

    def update_file(self, owner, repo, path, content, sha, message):
        if self.write_error is not None:
            raise self.write_error
        key = f"{owner}/{repo}"
        self.writes.append({
            "repo": key, "path": path, "content": content, "sha": sha, "message": message
        })
        self.readmes[key] = TrackedFile(content=content, sha=f"{sha}+1", path=path)

    def get_authenticated_user(self):
        return self.user

    def get_repository(self, owner, repo):
        return self.repo_infos.get(f"{owner}/{repo}")

    def list_user_repositories(self):
        return list(self.repo_infos.values())


@pytest.fixture
def fake_client():
    return FakeGitHubClient()


@pytest.fixture
def store(tmp_path):
    return JsonSubjectStore(str(tmp_path / "subjects.json"))


def make_subject(
    subject_id: str = "alice",
    repos: Optional[List[MonitoredRepository]] = None,
    monitoring: bool = True,
    credential: str = "ghp_token"
) -> MonitoringSubject:
    return MonitoringSubject(
        subject_id=subject_id,
        owner_identity=subject_id,
        credential=credential,
        is_monitoring_enabled=monitoring,
        repositories=repos or []
    )
