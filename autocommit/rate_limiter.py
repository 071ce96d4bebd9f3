"""Request rate limiting for on-demand checks."""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

import psycopg2

from .exceptions import StoreUnavailable
from .subject_store import get_db_connection


RATE_LIMIT_WINDOW_SECONDS = 60
MAX_REQUESTS = 100


class RateLimiter:
    def allow(self, key: str) -> bool:
        raise NotImplementedError


class FixedWindowRateLimiter(RateLimiter):
    """Counts requests per key in fixed windows. Only valid within one process."""

    # Expired windows are dropped once this many keys are tracked.
    EVICT_THRESHOLD = 1000

    def __init__(
        self,
        max_requests: int = MAX_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = self.clock()
        with self._lock:
            if len(self._windows) >= self.EVICT_THRESHOLD:
                self._evict_expired(now)
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                self._windows[key] = (1, now + self.window_seconds)
                return True
            if count >= self.max_requests:
                return False
            self._windows[key] = (count + 1, reset_at)
            return True

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]


class PostgresRateLimiter(RateLimiter):
    """Fixed-window counter shared by every worker through one table."""

    def __init__(
        self,
        db_url: Optional[str] = None,
        max_requests: int = MAX_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS
    ):
        self.db_url = db_url
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.logger = logging.getLogger(__name__)

    def ensure_schema(self) -> None:
        conn = get_db_connection(self.db_url)
        try:
            with conn, conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS rate_limits (
                        key TEXT PRIMARY KEY,
                        count INTEGER NOT NULL,
                        reset_at TIMESTAMPTZ NOT NULL
                    )
                """)
        finally:
            conn.close()

    def allow(self, key: str) -> bool:
        conn = None
        try:
            conn = get_db_connection(self.db_url)
            with conn, conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO rate_limits (key, count, reset_at)
                    VALUES (%s, 1, now() + make_interval(secs => %s))
                    ON CONFLICT (key) DO UPDATE SET
                        count = CASE WHEN rate_limits.reset_at <= now()
                                     THEN 1 ELSE rate_limits.count + 1 END,
                        reset_at = CASE WHEN rate_limits.reset_at <= now()
                                        THEN EXCLUDED.reset_at ELSE rate_limits.reset_at END
                    RETURNING count
                """, (key, self.window_seconds))
                count = cur.fetchone()[0]
        except (psycopg2.Error, StoreUnavailable) as e:
            # An unreachable limiter should not block polling.
            self.logger.error(f"Rate limit check failed for {key}: {e}")
            return True
        finally:
            if conn is not None:
                conn.close()
        return count <= self.max_requests
