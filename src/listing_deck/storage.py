from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from listing_deck.errors import UsageStoreError
from listing_deck.models import UsageCounter


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteBase:
    """Shared connection handling for the process-local SQLite stores.

    The connection may be used from any thread; every access goes through
    ``self.lock``.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.lock = threading.RLock()
        self.conn: Optional[sqlite3.Connection] = sqlite3.connect(
            self.path, check_same_thread=False
        )
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        with self.lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self.lock:
            if self.conn is None:
                raise sqlite3.ProgrammingError("store is closed")
            try:
                yield self.conn
            except BaseException:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()


class SQLiteUsageStore(SQLiteBase):
    """Persists :class:`UsageCounter` rows keyed by API name."""

    def _init_schema(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS api_usage (
                key TEXT PRIMARY KEY,
                count INTEGER NOT NULL DEFAULT 0,
                period_end TEXT NOT NULL
            )
            """
        )
        self.conn.commit()

    def load_usage(self, key: str) -> Optional[UsageCounter]:
        try:
            with self.lock:
                row = self.conn.execute(
                    "SELECT count, period_end FROM api_usage WHERE key=?", (key,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise UsageStoreError(f"cannot read API usage: {exc}") from exc
        if not row:
            return None
        return UsageCounter(count=int(row["count"]), period_end=from_iso(row["period_end"]))

    def save_usage(self, key: str, counter: UsageCounter) -> None:
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO api_usage (key, count, period_end) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        count=excluded.count,
                        period_end=excluded.period_end
                    """,
                    (key, int(counter.count), to_iso(counter.period_end)),
                )
        except sqlite3.Error as exc:
            raise UsageStoreError(f"cannot write API usage: {exc}") from exc
