#! /usr/bin/python3
# -*- coding: utf-8 -*-
"""SQLite-backed on-device store for DreamWeaver.

The device is the trust boundary here: entries are kept as a plain JSON
array, unencrypted at rest. Everything lives in one key-value table so the
layout mirrors a browser-style local storage namespace.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import asyncio
import json
import logging
import os
import uuid

import aiosqlite

from .errors import InvalidInputError, RecordNotFoundError
from .models import (
    Entry,
    EntryStats,
    SubscriptionTier,
    User,
    compute_stats,
    normalize_labels,
    utcnow,
)

logger = logging.getLogger(__name__)

DB_PATH = os.environ.get("DREAMWEAVER_DB", "dreamweaver_local.sqlite3")

USER_KEY = "dreamweaver_user"
ENTRIES_KEY = "dreamweaver_dreams"
KEY_INFO_KEY = "dreamweaver_key_info"
MIGRATION_CURSOR_KEY = "dreamweaver_migrated"


# ---------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS kv (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""


class LocalStore:
    """Fallback persistence of entries, the user profile and key info."""

    def __init__(self, path: str = DB_PATH) -> None:
        self.path = str(path)
        self._initialized = False
        self._lock = asyncio.Lock()

    # -----------------------------------------------------------------
    # Connection / initialization
    # -----------------------------------------------------------------

    async def init_db(self) -> None:
        """Create the key-value table if it doesn't exist."""
        async with aiosqlite.connect(self.path) as db:
            await db.executescript(SCHEMA_SQL)
            await db.commit()
        self._initialized = True

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        if not self._initialized:
            await self.init_db()
        async with aiosqlite.connect(self.path) as db:
            yield db

    # -----------------------------------------------------------------
    # Key-value namespace
    # -----------------------------------------------------------------

    async def get_value(self, key: str) -> Any:
        """Return the decoded JSON value stored under *key*, or None."""
        async with self._connect() as db:
            cur = await db.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = await cur.fetchone()
            await cur.close()
        return json.loads(row[0]) if row else None

    async def set_value(self, key: str, value: Any) -> None:
        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE
                   SET value = excluded.value,
                       updated_at = excluded.updated_at
                """,
                (key, json.dumps(value), utcnow().isoformat()),
            )
            await db.commit()

    async def delete_value(self, key: str) -> None:
        async with self._connect() as db:
            await db.execute("DELETE FROM kv WHERE key = ?", (key,))
            await db.commit()

    async def update_value(self, key: str, fn: Callable[[Any], Any]) -> Any:
        """Replace the value under *key* with ``fn(current)`` atomically.

        *current* is None when the key is unset. Returning None deletes the key.
        """
        async with self._lock:
            value = fn(await self.get_value(key))
            if value is None:
                await self.delete_value(key)
            else:
                await self.set_value(key, value)
        return value

    # -----------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------

    async def get_user(self) -> Optional[User]:
        """Return the profile stored on this device, if any."""
        data = await self.get_value(USER_KEY)
        return User.from_dict(data) if data else None

    async def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        user = await self.get_user()
        if user is None or (user.external_id and user.external_id != external_id):
            return None
        return user

    async def create_user(
        self,
        email: str,
        external_id: Optional[str] = None,
        subscription_tier: SubscriptionTier = SubscriptionTier.FREE,
    ) -> User:
        """Store a new device profile, replacing any previous one."""
        now = utcnow()
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            external_id=external_id,
            subscription_tier=SubscriptionTier(subscription_tier),
            created_at=now,
            updated_at=now,
        )
        await self.set_value(USER_KEY, user.to_dict())
        return user

    async def update_user(self, user_id: str, changes: Dict[str, Any]) -> User:
        async with self._lock:
            user = await self.get_user()
            if user is None or user.id != user_id:
                raise RecordNotFoundError(f"User {user_id} not found")
            updated = user.merged(changes)
            updated.updated_at = utcnow()
            await self.set_value(USER_KEY, updated.to_dict())
        return updated

    # -----------------------------------------------------------------
    # Entries
    # -----------------------------------------------------------------

    async def all_entries(self) -> List[Entry]:
        """Every stored entry regardless of owner, in stored order."""
        data = await self.get_value(ENTRIES_KEY) or []
        return [Entry.from_dict(d) for d in data]

    async def _save_entries(self, entries: List[Entry]) -> None:
        await self.set_value(ENTRIES_KEY, [e.to_dict() for e in entries])

    async def create_entry(self, entry: Entry) -> Entry:
        """Insert *entry* at the front of the collection; timestamps are assigned here."""
        entry.validate()
        entry.tags = normalize_labels(entry.tags)
        entry.emotions = normalize_labels(entry.emotions)
        async with self._lock:
            user = await self.get_user()
            if user is None or user.id != entry.user_id:
                raise InvalidInputError(f"Unknown user {entry.user_id} for local entry")
            entries = await self.all_entries()
            if any(e.id == entry.id for e in entries):
                raise InvalidInputError(f"Entry {entry.id} already exists")
            now = utcnow()
            entry.created_at = now
            entry.updated_at = now
            entries.insert(0, entry)
            await self._save_entries(entries)
        return entry

    async def get_entry(self, entry_id: str) -> Entry:
        for e in await self.all_entries():
            if e.id == entry_id:
                return e
        raise RecordNotFoundError(f"Entry {entry_id} not found")

    async def list_entries(self, user_id: str) -> List[Entry]:
        """Entries owned by *user_id*, newest-created first."""
        owned = [e for e in await self.all_entries() if e.user_id == user_id]
        return sorted(owned, key=lambda e: e.created_at or utcnow(), reverse=True)

    async def update_entry(self, entry_id: str, fields: Dict[str, Any]) -> Entry:
        """Merge *fields* into the stored entry; only supplied fields change."""
        fields = {k: v for k, v in fields.items() if k not in ("id", "user_id", "created_at", "updated_at")}
        for name in ("tags", "emotions"):
            if name in fields:
                fields[name] = normalize_labels(fields[name])
        async with self._lock:
            entries = await self.all_entries()
            for i, e in enumerate(entries):
                if e.id != entry_id:
                    continue
                for name, value in fields.items():
                    if not hasattr(e, name):
                        raise InvalidInputError(f"Unknown entry field: {name}")
                    setattr(e, name, value)
                now = utcnow()
                e.updated_at = max(now, e.created_at) if e.created_at else now
                e.validate()
                entries[i] = e
                await self._save_entries(entries)
                return e
        raise RecordNotFoundError(f"Entry {entry_id} not found")

    async def delete_entry(self, entry_id: str) -> None:
        """Hard delete; unknown ids are ignored."""
        async with self._lock:
            entries = await self.all_entries()
            kept = [e for e in entries if e.id != entry_id]
            if len(kept) != len(entries):
                await self._save_entries(kept)

    async def clear_entries(self) -> None:
        await self.delete_value(ENTRIES_KEY)

    async def get_stats(self, user_id: str) -> EntryStats:
        return compute_stats(await self.list_entries(user_id))
