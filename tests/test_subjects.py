"""Tests for subject registration and repo management."""

from unittest.mock import Mock

import pytest

from autocommit.exceptions import (
    CredentialInvalid,
    DuplicateRepository,
    NotFoundError,
    StoreUnavailable,
    SubjectNotFound,
    ValidationError,
)
from autocommit.models import ActivityAction, GitHubUser, RepoInfo
from autocommit.reconciler import Reconciler
from autocommit.subjects import (
    SubjectService,
    is_valid_repo_format,
    is_valid_token_format,
    sanitize_input,
)

from conftest import make_subject


VALID_TOKEN = "ghp_" + "a" * 36


@pytest.fixture
def service(store, fake_client):
    return SubjectService(store, client_factory=lambda token: fake_client)


class TestValidation:

    def test_sanitize_input(self):
        assert sanitize_input("  <alice>  ") == "alice"

    def test_token_format(self):
        assert is_valid_token_format(VALID_TOKEN)
        assert not is_valid_token_format("ghp_short")
        assert not is_valid_token_format("xyz_" + "a" * 36)

    @pytest.mark.parametrize("owner, name, valid", [
        ("alice", "repo.name-1", True),
        ("", "repo", False),
        ("a" * 40, "repo", False),
        ("alice", "bad/name", False),
    ])
    def test_repo_format(self, owner, name, valid):
        assert is_valid_repo_format(owner, name) is valid


class TestRegister:

    def test_creates_subject(self, service, store, fake_client):
        fake_client.user = GitHubUser(login="alice", id=1)

        subject = service.register(VALID_TOKEN)

        assert subject.subject_id == "alice"
        assert store.get("alice").credential == VALID_TOKEN

    def test_rejected_token(self, service):
        with pytest.raises(CredentialInvalid):
            service.register(VALID_TOKEN)

    def test_malformed_token(self, service):
        with pytest.raises(ValidationError):
            service.register("not-a-token")


class TestRepositories:

    def test_add_seeds_from_newest_commit(self, service, store, fake_client):
        store.save(make_subject())
        fake_client.repo_infos["alice/a"] = RepoInfo(owner="alice", name="a", full_name="alice/a")
        fake_client.push("alice/a", "abc", "bob")

        repo = service.add_repository("alice", "alice", "a")

        assert (repo.last_commit_sha, repo.last_commit_author) == ("abc", "bob")
        assert repo.auto_commit_count == 0
        subject = store.get("alice")
        assert subject.repositories[0].full_name == "alice/a"
        assert subject.activity_log[0].action == ActivityAction.REPOSITORY_ADDED

    def test_add_duplicate(self, service, store, fake_client):
        store.save(make_subject())
        fake_client.repo_infos["alice/a"] = RepoInfo(owner="alice", name="a", full_name="alice/a")
        service.add_repository("alice", "alice", "a")

        with pytest.raises(DuplicateRepository):
            service.add_repository("alice", "alice", "a")

    def test_add_duplicate_in_other_case(self, service, store, fake_client):
        store.save(make_subject())
        info = RepoInfo(owner="alice", name="repo", full_name="alice/repo")
        fake_client.repo_infos["alice/repo"] = info
        fake_client.repo_infos["Alice/Repo"] = info
        service.add_repository("alice", "alice", "repo")

        with pytest.raises(DuplicateRepository):
            service.add_repository("alice", "Alice", "Repo")

        assert [r.full_name for r in store.get("alice").repositories] == ["alice/repo"]

    def test_add_stores_host_spelling(self, service, store, fake_client):
        store.save(make_subject())
        fake_client.repo_infos["ALICE/REPO"] = RepoInfo(
            owner="alice", name="Repo", full_name="alice/Repo"
        )

        repo = service.add_repository("alice", "ALICE", "REPO")

        assert repo.full_name == "alice/Repo"

    def test_add_unknown_repo(self, service, store):
        store.save(make_subject())
        with pytest.raises(NotFoundError):
            service.add_repository("alice", "alice", "missing")

    def test_add_for_unknown_subject(self, service):
        with pytest.raises(SubjectNotFound):
            service.add_repository("nobody", "alice", "a")

    def test_remove(self, service, store, fake_client):
        store.save(make_subject())
        fake_client.repo_infos["alice/a"] = RepoInfo(owner="alice", name="a", full_name="alice/a")
        service.add_repository("alice", "alice", "a")

        service.remove_repository("alice", "alice", "a")

        subject = store.get("alice")
        assert subject.repositories == []
        assert subject.activity_log[0].action == ActivityAction.REPOSITORY_REMOVED

    def test_remove_ignores_case(self, service, store, fake_client):
        store.save(make_subject())
        fake_client.repo_infos["alice/repo"] = RepoInfo(
            owner="alice", name="repo", full_name="alice/repo"
        )
        service.add_repository("alice", "alice", "repo")

        service.remove_repository("alice", "ALICE", "REPO")

        assert store.get("alice").repositories == []

    def test_remove_missing(self, service, store):
        store.save(make_subject())
        with pytest.raises(NotFoundError):
            service.remove_repository("alice", "alice", "a")

    def test_available_excludes_monitored(self, service, store, fake_client):
        store.save(make_subject())
        fake_client.repo_infos["alice/a"] = RepoInfo(owner="alice", name="a", full_name="alice/a")
        fake_client.repo_infos["alice/b"] = RepoInfo(owner="alice", name="b", full_name="alice/b")
        service.add_repository("alice", "alice", "a")

        assert [r.full_name for r in service.available_repositories("alice")] == ["alice/b"]


class TestMonitoringToggle:

    def test_enable_with_interval(self, service, store):
        store.save(make_subject(monitoring=False))

        subject = service.set_monitoring("alice", True, poll_interval_ms=60000)

        assert subject.is_monitoring_enabled is True
        assert store.get("alice").poll_interval_ms == 60000
        assert store.get("alice").activity_log[0].action == ActivityAction.MONITORING_ENABLED

    def test_out_of_range_interval_ignored(self, service, store):
        store.save(make_subject())

        service.set_monitoring("alice", False, poll_interval_ms=5000)

        subject = store.get("alice")
        assert subject.poll_interval_ms == 30000
        assert subject.activity_log[0].action == ActivityAction.MONITORING_DISABLED

    def test_store_failure_recorded_and_raised(self):
        store = Mock()
        store.get.return_value = make_subject()
        store.save.side_effect = [StoreUnavailable("write failed"), None]
        service = SubjectService(store, client_factory=Mock())

        with pytest.raises(StoreUnavailable):
            service.set_monitoring("alice", True)

        recorded = store.save.call_args[0][0]
        assert recorded.activity_log[0].action == ActivityAction.MONITORING_TOGGLE_FAILED

    def test_get_activity(self, service, store):
        store.save(make_subject())
        service.set_monitoring("alice", True)
        assert len(service.get_activity("alice")) == 1

    def test_clear_activity(self, service, store):
        store.save(make_subject())
        service.set_monitoring("alice", True)

        service.clear_activity("alice")

        assert store.get("alice").activity_log == []
        assert service.get_activity("alice") == []

    def test_clear_activity_unknown_subject(self, service):
        with pytest.raises(SubjectNotFound):
            service.clear_activity("nobody")


class TestRepositoryActive:

    @pytest.fixture
    def monitored(self, service, store, fake_client):
        store.save(make_subject())
        fake_client.repo_infos["alice/a"] = RepoInfo(owner="alice", name="a", full_name="alice/a")
        fake_client.push("alice/a", "abc", "alice")
        service.add_repository("alice", "alice", "a")

    def test_pause_keeps_state(self, service, store, monitored):
        repo = service.set_repository_active("alice", "alice", "a", False)

        assert repo.is_active is False
        subject = store.get("alice")
        assert subject.active_repositories() == []
        assert subject.repositories[0].last_commit_sha == "abc"

    def test_paused_repo_not_checked(self, service, store, fake_client, monitored):
        service.set_repository_active("alice", "alice", "a", False)
        fake_client.push("alice/a", "def", "bob")

        cycle = Reconciler(store, client_factory=lambda token: fake_client).run_check_cycle("alice")

        assert cycle.results == []
        assert fake_client.writes == []

    def test_resume(self, service, store, monitored):
        service.set_repository_active("alice", "alice", "a", False)

        service.set_repository_active("alice", "Alice", "A", True)

        assert [r.full_name for r in store.get("alice").active_repositories()] == ["alice/a"]

    def test_unknown_repo(self, service, store):
        store.save(make_subject())
        with pytest.raises(NotFoundError):
            service.set_repository_active("alice", "alice", "missing", False)

    def test_missing_owner(self, service, store):
        store.save(make_subject())
        with pytest.raises(ValidationError):
            service.set_repository_active("alice", " ", "a", False)


class TestDefaultClient:

    def test_uses_configured_timeout(self, store):
        service = SubjectService(store, timeout=2.5)
        assert service.client_factory(VALID_TOKEN).timeout == 2.5
