"""Data models for the commit keep-alive service."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


SYSTEM_REPO_MARKER = "system"


class ActivityAction(str, Enum):
    """Fixed labels recorded in a subject's activity log."""
    AUTO_COMMIT_SUCCESS = "Auto-Commit Success"
    AUTO_COMMIT_FAILED = "Auto-Commit Failed"
    COMMIT_DETECTED = "Commit Detected"
    REPOSITORY_ADDED = "Repository Added"
    REPOSITORY_REMOVED = "Repository Removed"
    MONITORING_ENABLED = "Background Monitoring Enabled"
    MONITORING_DISABLED = "Background Monitoring Disabled"
    MONITORING_TOGGLE_FAILED = "Monitoring Toggle Failed"
    POLL_ERROR = "Poll Error"


@dataclass
class GitHubUser:
    """Identity returned when a token validates."""
    login: str
    id: int
    avatar_url: str = ""
    name: Optional[str] = None


@dataclass
class RepoInfo:
    owner: str
    name: str
    full_name: str
    private: bool = False
    description: Optional[str] = None


@dataclass
class CommitInfo:
    """Single commit as listed by the host."""
    sha: str
    author: str
    message: str
    date: str


@dataclass
class TrackedFile:
    """The README being kept alive, with its blob sha as revision marker."""
    content: str
    sha: str
    path: str = "README.md"


@dataclass
class MonitoredRepository:
    """Per-repo tracking state."""
    owner: str
    name: str
    last_commit_sha: Optional[str] = None
    last_commit_author: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    is_active: bool = True
    auto_commit_count: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class ActivityLogEntry:
    repo: str
    action: ActivityAction
    message: str
    success: bool
    timestamp: datetime


@dataclass
class MonitoringSubject:
    """A registered owner and everything the engine tracks for them."""
    subject_id: str
    owner_identity: str
    credential: str
    is_monitoring_enabled: bool = False
    poll_interval_ms: int = 30000
    repositories: List[MonitoredRepository] = field(default_factory=list)
    activity_log: List[ActivityLogEntry] = field(default_factory=list)

    def find_repository(self, owner: str, name: str) -> Optional[MonitoredRepository]:
        """Look up a repo the way GitHub does, ignoring case."""
        owner, name = owner.lower(), name.lower()
        for repo in self.repositories:
            if repo.owner.lower() == owner and repo.name.lower() == name:
                return repo
        return None

    def active_repositories(self) -> List[MonitoredRepository]:
        return [r for r in self.repositories if r.is_active]


@dataclass
class CommitCheck:
    """Outcome of comparing tracked state with the newest remote commit."""
    has_new: bool
    latest_commit: Optional[CommitInfo]
    is_from_other: bool


@dataclass
class ExecutionResult:
    success: bool
    message: str


@dataclass
class RepoCheckResult:
    """One line of an on-demand cycle's output."""
    repo: str
    checked: bool = True
    new_commit: bool = False
    auto_commit_triggered: bool = False
    auto_commit_success: bool = False
    message: str = ""
    error: Optional[str] = None


@dataclass
class CheckCycleResult:
    timestamp: datetime
    results: List[RepoCheckResult]
    cancelled: bool = False


@dataclass
class SubjectSweepResult:
    user: str
    repos_checked: int = 0
    auto_commits_triggered: int = 0
    auto_commits_successful: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class SweepResult:
    timestamp: datetime
    users_processed: int
    total_auto_commits: int
    results: List[SubjectSweepResult]
