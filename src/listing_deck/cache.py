from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from listing_deck.errors import CacheUnavailable
from listing_deck.models import Property, utcnow
from listing_deck.storage import SQLiteBase, from_iso, to_iso


logger = logging.getLogger("listing_deck.cache")

DEFAULT_TTL = timedelta(hours=24)
DEFAULT_READ_LIMIT = 100
_LAST_REFRESHED_KEY = "last_refreshed_at"


def merge_documents(existing: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``incoming`` on ``existing``; absent (None) fields keep the old value.

    ``createdAt`` always survives from the first write so cache ordering
    reflects when a listing was first seen.
    """
    merged = dict(existing)
    for key, value in incoming.items():
        if value is None and key in existing:
            continue
        merged[key] = value
    if existing.get("createdAt"):
        merged["createdAt"] = existing["createdAt"]
    return merged


class ListingCache(SQLiteBase):
    """Document-per-property cache plus a single refresh timestamp.

    A cache with no ``last_refreshed_at`` holds nothing known to come from the
    API and is always stale.
    """

    def __init__(
        self,
        path: str,
        *,
        ttl: timedelta = DEFAULT_TTL,
        read_limit: int = DEFAULT_READ_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ttl = ttl
        self.read_limit = read_limit
        self.clock = clock
        super().__init__(path)

    def _init_schema(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS listings (
                id TEXT PRIMARY KEY,
                doc_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_listings_created_at ON listings(created_at)"
        )
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cache_meta (
                key TEXT PRIMARY KEY,
                value TEXT
            )
            """
        )
        self.conn.commit()

    def last_refreshed_at(self) -> Optional[datetime]:
        try:
            with self.lock:
                row = self.conn.execute(
                    "SELECT value FROM cache_meta WHERE key=?", (_LAST_REFRESHED_KEY,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise CacheUnavailable(f"cannot read cache metadata: {exc}") from exc
        return from_iso(row["value"]) if row else None

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        refreshed = self.last_refreshed_at()
        if refreshed is None:
            return True
        now = now or self.clock()
        return now - refreshed > self.ttl

    def load(self, limit: Optional[int] = None) -> List[Property]:
        """Most recently created properties first, capped at ``read_limit``."""
        limit = self.read_limit if limit is None else limit
        try:
            with self.lock:
                rows = self.conn.execute(
                    "SELECT id, doc_json FROM listings ORDER BY created_at DESC, id ASC LIMIT ?",
                    (int(limit),),
                ).fetchall()
        except sqlite3.Error as exc:
            raise CacheUnavailable(f"cannot read cached listings: {exc}") from exc
        properties: List[Property] = []
        for row in rows:
            try:
                properties.append(Property.from_document(json.loads(row["doc_json"])))
            except (ValueError, ValidationError):
                logger.warning("Skipping unreadable cache entry %s", row["id"])
        return properties

    def get(self, property_id: str) -> Optional[Property]:
        with self.lock:
            row = self.conn.execute(
                "SELECT doc_json FROM listings WHERE id=?", (property_id,)
            ).fetchone()
        if not row:
            return None
        return Property.from_document(json.loads(row["doc_json"]))

    def upsert(
        self,
        properties: Iterable[Property],
        *,
        refreshed_at: Optional[datetime] = None,
    ) -> int:
        """Write one refresh cycle as a single transaction.

        When ``refreshed_at`` is given it is recorded as the new
        ``last_refreshed_at`` in the same transaction. Returns the number of
        documents written.
        """
        batch = list(properties)
        try:
            with self.transaction() as conn:
                for prop in batch:
                    incoming = prop.to_document()
                    row = conn.execute(
                        "SELECT doc_json FROM listings WHERE id=?", (prop.id,)
                    ).fetchone()
                    doc = incoming
                    if row:
                        try:
                            doc = merge_documents(json.loads(row["doc_json"]), incoming)
                        except ValueError:
                            doc = incoming
                    conn.execute(
                        """
                        INSERT INTO listings (id, doc_json, created_at, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                            doc_json=excluded.doc_json,
                            updated_at=excluded.updated_at
                        """,
                        (
                            prop.id,
                            json.dumps(doc, sort_keys=True),
                            to_iso(prop.created_at),
                            to_iso(prop.updated_at),
                        ),
                    )
                if refreshed_at is not None:
                    conn.execute(
                        """
                        INSERT INTO cache_meta (key, value) VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET value=excluded.value
                        """,
                        (_LAST_REFRESHED_KEY, to_iso(refreshed_at)),
                    )
        except sqlite3.Error as exc:
            logger.error(
                "Cache batch of %d listings rolled back; cache keeps the previous refresh: %s",
                len(batch),
                exc,
            )
            raise CacheUnavailable(f"cannot write cached listings: {exc}") from exc
        logger.debug("Cached %d listings", len(batch))
        return len(batch)

    def count(self) -> int:
        with self.lock:
            row = self.conn.execute("SELECT COUNT(*) AS n FROM listings").fetchone()
        return int(row["n"])

    def clear(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM listings")
            conn.execute("DELETE FROM cache_meta")
