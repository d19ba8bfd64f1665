from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from listing_deck.models import UserPreferences, utcnow
from listing_deck.storage import SQLiteBase


logger = logging.getLogger("listing_deck.preferences")


class PreferencesStore(SQLiteBase):
    """One flat JSON preferences document per user."""

    def _init_schema(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS user_preferences (
                user_id TEXT PRIMARY KEY,
                doc_json TEXT NOT NULL DEFAULT '{}',
                updated_at TEXT NOT NULL
            )
            """
        )
        self.conn.commit()

    def _load_document(self, user_id: str) -> Dict[str, Any]:
        with self.lock:
            row = self.conn.execute(
                "SELECT doc_json FROM user_preferences WHERE user_id=?", (user_id,)
            ).fetchone()
        if not row:
            return {}
        try:
            doc = json.loads(row["doc_json"]) if row["doc_json"] else {}
        except ValueError:
            doc = {}
        return doc if isinstance(doc, dict) else {}

    def get(self, user_id: str) -> Optional[UserPreferences]:
        doc = self._load_document(user_id)
        if not doc:
            return None
        try:
            return UserPreferences.model_validate(doc)
        except ValidationError:
            logger.warning("Discarding unreadable preferences for user %s", user_id)
            return None

    def save(self, user_id: str, preferences: UserPreferences) -> UserPreferences:
        """Merge ``preferences`` into the stored document and return the result."""
        preferences.updated_at = utcnow()
        merged = self._load_document(user_id)
        merged.update(preferences.to_document())
        saved = UserPreferences.model_validate(merged)
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO user_preferences (user_id, doc_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    doc_json=excluded.doc_json,
                    updated_at=excluded.updated_at
                """,
                (
                    user_id,
                    json.dumps(saved.to_document(), sort_keys=True),
                    saved.updated_at.isoformat(),
                ),
            )
        return saved
