"""Persistence of monitoring subjects.

Each subject is stored as one document (repositories plus activity log) and
every save replaces the whole document, so a crash mid-cycle never leaves a
half-updated repository list behind.
"""

import json
import logging
import os
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from .exceptions import StoreUnavailable
from .models import (
    ActivityAction,
    ActivityLogEntry,
    MonitoredRepository,
    MonitoringSubject,
)


DEFAULT_STATE_FILE = "state/subjects.json"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def subject_to_dict(subject: MonitoringSubject) -> Dict[str, Any]:
    """Convert a subject to a JSON-serializable dict."""
    return {
        "subjectId": subject.subject_id,
        "ownerIdentity": subject.owner_identity,
        "credential": subject.credential,
        "isMonitoringEnabled": subject.is_monitoring_enabled,
        "pollIntervalMs": subject.poll_interval_ms,
        "repositories": [
            {
                "owner": r.owner,
                "name": r.name,
                "fullName": r.full_name,
                "isActive": r.is_active,
                "lastCommitSha": r.last_commit_sha,
                "lastCommitAuthor": r.last_commit_author,
                "lastCheckedAt": r.last_checked_at.isoformat() if r.last_checked_at else None,
                "autoCommitCount": r.auto_commit_count
            }
            for r in subject.repositories
        ],
        "activityLog": [
            {
                "repo": e.repo,
                "action": e.action.value,
                "message": e.message,
                "success": e.success,
                "timestamp": e.timestamp.isoformat()
            }
            for e in subject.activity_log
        ]
    }


def subject_from_dict(data: Dict[str, Any]) -> MonitoringSubject:
    return MonitoringSubject(
        subject_id=data["subjectId"],
        owner_identity=data["ownerIdentity"],
        credential=data.get("credential", ""),
        is_monitoring_enabled=data.get("isMonitoringEnabled", False),
        poll_interval_ms=data.get("pollIntervalMs", 30000),
        repositories=[
            MonitoredRepository(
                owner=r["owner"],
                name=r["name"],
                last_commit_sha=r.get("lastCommitSha"),
                last_commit_author=r.get("lastCommitAuthor"),
                last_checked_at=_parse_datetime(r.get("lastCheckedAt")),
                is_active=r.get("isActive", True),
                auto_commit_count=r.get("autoCommitCount", 0)
            )
            for r in data.get("repositories", [])
        ],
        activity_log=[
            ActivityLogEntry(
                repo=e["repo"],
                action=ActivityAction(e["action"]),
                message=e["message"],
                success=e["success"],
                timestamp=_parse_datetime(e["timestamp"])
            )
            for e in data.get("activityLog", [])
        ]
    )


class SubjectStore:
    """Interface every subject registry implements."""

    def get(self, subject_id: str) -> Optional[MonitoringSubject]:
        raise NotImplementedError

    def list_monitoring_enabled(self) -> List[MonitoringSubject]:
        raise NotImplementedError

    def save(self, subject: MonitoringSubject) -> None:
        raise NotImplementedError

    def delete(self, subject_id: str) -> None:
        raise NotImplementedError


class JsonSubjectStore(SubjectStore):
    """All subjects in a single JSON file."""

    def __init__(self, state_file: str = DEFAULT_STATE_FILE):
        self.state_file = Path(state_file)
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self.state_file.exists():
            return {}
        try:
            with open(self.state_file) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailable(f"Failed to read {self.state_file}: {e}") from e

    def _write(self, data: Dict[str, Dict[str, Any]]) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.state_file.with_suffix(".tmp")
        with open(tmp_file, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_file, self.state_file)

    def get(self, subject_id: str) -> Optional[MonitoringSubject]:
        with self._lock:
            data = self._load().get(subject_id)
        return subject_from_dict(data) if data else None

    def list_monitoring_enabled(self) -> List[MonitoringSubject]:
        with self._lock:
            data = self._load()
        subjects = [
            subject_from_dict(d) for d in data.values()
            if d.get("isMonitoringEnabled")
        ]
        self.logger.info(f"Loaded {len(subjects)} subjects with monitoring enabled")
        return subjects

    def save(self, subject: MonitoringSubject) -> None:
        with self._lock:
            data = self._load()
            data[subject.subject_id] = subject_to_dict(subject)
            self._write(data)
        self.logger.debug(f"Saved subject {subject.subject_id}")

    def delete(self, subject_id: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(subject_id, None) is not None:
                self._write(data)


def get_db_connection(db_url: Optional[str] = None):
    """Get database connection from argument or environment variable."""
    db_url = db_url or os.environ.get("AUTOCOMMIT_DB_URL")
    if not db_url:
        raise ValueError("AUTOCOMMIT_DB_URL environment variable required")

    # Remove pgbouncer parameter if present (not supported by psycopg2)
    db_url = re.sub(r'\?pgbouncer=true', '', db_url)

    try:
        return psycopg2.connect(db_url)
    except psycopg2.OperationalError as e:
        raise StoreUnavailable(f"Cannot connect to subject database: {e}") from e


class PostgresSubjectStore(SubjectStore):
    """One JSONB document per subject in PostgreSQL."""

    def __init__(self, db_url: Optional[str] = None):
        self.db_url = db_url
        self.logger = logging.getLogger(__name__)

    def ensure_schema(self) -> None:
        conn = get_db_connection(self.db_url)
        try:
            with conn, conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS monitoring_subjects (
                        subject_id TEXT PRIMARY KEY,
                        monitoring_enabled BOOLEAN NOT NULL DEFAULT FALSE,
                        document JSONB NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                """)
        finally:
            conn.close()

    def _fetch(self, query: str, params: tuple) -> List[Dict[str, Any]]:
        conn = get_db_connection(self.db_url)
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg2.Error as e:
            raise StoreUnavailable(f"Subject query failed: {e}") from e
        finally:
            conn.close()

    def get(self, subject_id: str) -> Optional[MonitoringSubject]:
        rows = self._fetch(
            "SELECT document FROM monitoring_subjects WHERE subject_id = %s",
            (subject_id,)
        )
        return subject_from_dict(rows[0]["document"]) if rows else None

    def list_monitoring_enabled(self) -> List[MonitoringSubject]:
        rows = self._fetch(
            "SELECT document FROM monitoring_subjects "
            "WHERE monitoring_enabled ORDER BY subject_id",
            ()
        )
        self.logger.info(f"Loaded {len(rows)} subjects with monitoring enabled")
        return [subject_from_dict(row["document"]) for row in rows]

    def save(self, subject: MonitoringSubject) -> None:
        conn = get_db_connection(self.db_url)
        try:
            with conn, conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO monitoring_subjects (subject_id, monitoring_enabled, document, updated_at)
                    VALUES (%s, %s, %s, now())
                    ON CONFLICT (subject_id) DO UPDATE SET
                        monitoring_enabled = EXCLUDED.monitoring_enabled,
                        document = EXCLUDED.document,
                        updated_at = EXCLUDED.updated_at
                """, (
                    subject.subject_id,
                    subject.is_monitoring_enabled,
                    Json(subject_to_dict(subject))
                ))
        except psycopg2.Error as e:
            raise StoreUnavailable(f"Failed to save subject {subject.subject_id}: {e}") from e
        finally:
            conn.close()

    def delete(self, subject_id: str) -> None:
        conn = get_db_connection(self.db_url)
        try:
            with conn, conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM monitoring_subjects WHERE subject_id = %s",
                    (subject_id,)
                )
        finally:
            conn.close()


def store_from_env(
    db_url: Optional[str] = None,
    state_file: Optional[str] = None
) -> SubjectStore:
    """PostgreSQL when a database URL is configured, the JSON file otherwise."""
    db_url = db_url or os.environ.get("AUTOCOMMIT_DB_URL")
    if db_url:
        return PostgresSubjectStore(db_url)
    return JsonSubjectStore(
        state_file or os.environ.get("AUTOCOMMIT_STATE_FILE", DEFAULT_STATE_FILE)
    )
