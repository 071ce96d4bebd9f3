"""Tests for the activity log and tracked state updates."""

from datetime import datetime, timedelta, timezone

from autocommit import activity, state_tracker
from autocommit.models import ActivityAction, CommitInfo, MonitoredRepository

from conftest import make_subject


class TestActivityRecorder:

    def test_newest_entry_first(self):
        subject = make_subject()
        activity.record(subject, "alice/a", ActivityAction.COMMIT_DETECTED, "first", True)
        activity.record(subject, "alice/a", ActivityAction.AUTO_COMMIT_SUCCESS, "second", True)
        assert [e.message for e in subject.activity_log] == ["second", "first"]

    def test_log_capped_at_fifty(self):
        subject = make_subject()
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for i in range(51):
            activity.record(
                subject, "alice/a", ActivityAction.COMMIT_DETECTED, f"entry {i}", True,
                timestamp=start + timedelta(minutes=i)
            )

        assert len(subject.activity_log) == activity.MAX_ACTIVITY_ENTRIES
        assert subject.activity_log[0].message == "entry 50"
        assert subject.activity_log[-1].message == "entry 1"
        timestamps = [e.timestamp for e in subject.activity_log]
        assert timestamps == sorted(timestamps, reverse=True)


class TestStateTracker:

    def test_commit_overwrites_tracked_fields(self):
        repo = MonitoredRepository(owner="alice", name="a", last_commit_sha="abc",
                                   last_commit_author="alice")
        now = datetime.now(timezone.utc)
        latest = CommitInfo(sha="def", author="bob", message="m", date="")

        state_tracker.commit(repo, latest, now)

        assert state_tracker.observe(repo) == ("def", "bob")
        assert repo.last_checked_at == now

    def test_commit_without_commits_only_touches_checked_at(self):
        repo = MonitoredRepository(owner="alice", name="a", last_commit_sha="abc",
                                   last_commit_author="alice")
        now = datetime.now(timezone.utc)

        state_tracker.commit(repo, None, now)

        assert state_tracker.observe(repo) == ("abc", "alice")
        assert repo.last_checked_at == now

    def test_record_auto_commit_increments_by_one(self):
        repo = MonitoredRepository(owner="alice", name="a")
        state_tracker.record_auto_commit(repo)
        assert repo.auto_commit_count == 1
