# -*- coding: utf-8 -*-
"""Application logic that composes the stores, the codec and the key manager.

This module provides the public persistence API used by the UI. The backend
mode is decided once at construction: ``Mode.REMOTE`` when a RemoteStore is
supplied, ``Mode.LOCAL`` otherwise. There is no fallback between modes at
runtime. There is no module-level state; build an :class:`AppContext` once at
process start and pass it around.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
import logging
import uuid

from . import codec
from .config import RemoteBackend, Settings
from .crypto import KeyMaterial
from .db import MIGRATION_CURSOR_KEY, LocalStore
from .errors import DuplicateRecordError, InvalidInputError, MigrationError, RecordNotFoundError
from .keys import KeyManager
from .models import (
    DreamPatterns,
    Entry,
    EntryStats,
    EntryUpdate,
    SubscriptionTier,
    User,
    compute_patterns,
    normalize_labels,
    parse_date,
)
from .remote import RemoteStore

logger = logging.getLogger(__name__)

# interpret(content, {"emotions": [...], "tags": [...]}) -> interpretation text
Interpreter = Callable[[str, Dict[str, List[str]]], Awaitable[str]]


class Mode(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


class PersistenceFacade:
    """Backend-agnostic journal persistence."""

    def __init__(
        self,
        local: LocalStore,
        keys: KeyManager,
        remote: Optional[RemoteStore] = None,
    ) -> None:
        self.local = local
        self.keys = keys
        self.remote = remote
        self.mode = Mode.REMOTE if remote is not None else Mode.LOCAL
        logger.info("Persistence backend: %s", self.mode.value)

    def _key(self, key: Optional[KeyMaterial]) -> KeyMaterial:
        return key if key else self.keys.require_key()

    # -----------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------

    async def create_user(
        self,
        email: str,
        external_id: Optional[str] = None,
        subscription_tier: SubscriptionTier = SubscriptionTier.FREE,
    ) -> User:
        if not email:
            raise InvalidInputError("Email is required")
        if self.remote is not None:
            return await self.remote.create_user(email, external_id, subscription_tier)
        return await self.local.create_user(email, external_id, subscription_tier)

    async def get_user(self, external_id: str) -> Optional[User]:
        if self.remote is not None:
            return await self.remote.get_user_by_external_id(external_id)
        return await self.local.get_user_by_external_id(external_id)

    async def update_user(self, user_id: str, **changes: Any) -> User:
        if self.remote is not None:
            return await self.remote.update_user(user_id, changes)
        return await self.local.update_user(user_id, changes)

    # -----------------------------------------------------------------
    # Entries
    # -----------------------------------------------------------------

    async def create_entry(
        self,
        user_id: str,
        occurred_on: date,
        content: str,
        *,
        tags: Iterable[str] = (),
        emotions: Iterable[str] = (),
        interpretation: Optional[str] = None,
        key: Optional[KeyMaterial] = None,
    ) -> Entry:
        """Create an entry; the id is assigned here, timestamps by the store."""
        entry = Entry(
            id=str(uuid.uuid4()),
            user_id=user_id,
            occurred_on=parse_date(occurred_on),
            content=content,
            interpretation=interpretation or None,
            tags=normalize_labels(tags),
            emotions=normalize_labels(emotions),
        )
        entry.validate()
        if self.remote is None:
            return await self.local.create_entry(entry)
        k = self._key(key)
        stored = await self.remote.create_entry(codec.encrypt_entry(entry, k))
        return codec.decrypt_entry(stored, k)

    async def get_entry(self, entry_id: str, *, key: Optional[KeyMaterial] = None) -> Entry:
        if self.remote is None:
            return await self.local.get_entry(entry_id)
        k = self._key(key)
        return codec.decrypt_entry(await self.remote.get_entry(entry_id), k)

    async def list_entries(self, user_id: str, *, key: Optional[KeyMaterial] = None) -> List[Entry]:
        """Live entries, newest-created first. One unreadable record fails the call."""
        if self.remote is None:
            return await self.local.list_entries(user_id)
        k = self._key(key)
        return [codec.decrypt_entry(r, k) for r in await self.remote.list_entries(user_id)]

    async def update_entry(
        self,
        entry_id: str,
        update: EntryUpdate,
        *,
        key: Optional[KeyMaterial] = None,
    ) -> Entry:
        """Partial update: fields left as None keep their stored value."""
        if update.is_empty():
            raise InvalidInputError("Nothing to update")
        if self.remote is None:
            return await self.local.update_entry(entry_id, update.fields())
        k = self._key(key)
        stored = await self.remote.update_entry(entry_id, codec.encrypt_update(update, k))
        return codec.decrypt_entry(stored, k)

    async def delete_entry(self, entry_id: str) -> None:
        """Soft delete remotely, hard delete locally."""
        if self.remote is None:
            await self.local.delete_entry(entry_id)
        else:
            await self.remote.delete_entry(entry_id)

    async def get_stats(self, user_id: str) -> EntryStats:
        if self.remote is None:
            return await self.local.get_stats(user_id)
        return await self.remote.get_stats(user_id)

    # -----------------------------------------------------------------
    # Client-side queries (the remote store only holds ciphertext)
    # -----------------------------------------------------------------

    async def search_entries(
        self,
        user_id: str,
        *,
        tag: Optional[str] = None,
        emotion: Optional[str] = None,
        text: Optional[str] = None,
        key: Optional[KeyMaterial] = None,
    ) -> List[Entry]:
        """Entries matching ALL given filters (case-insensitive)."""
        entries = await self.list_entries(user_id, key=key)
        if tag:
            needle = tag.strip().lower()
            entries = [e for e in entries if needle in (t.lower() for t in e.tags)]
        if emotion:
            needle = emotion.strip().lower()
            entries = [e for e in entries if needle in (m.lower() for m in e.emotions)]
        if text:
            needle = text.strip().lower()
            entries = [
                e for e in entries
                if needle in e.content.lower() or needle in (e.interpretation or "").lower()
            ]
        return entries

    async def get_patterns(self, user_id: str, *, key: Optional[KeyMaterial] = None) -> DreamPatterns:
        return compute_patterns(await self.list_entries(user_id, key=key))

    async def interpret_entry(
        self,
        entry_id: str,
        interpreter: Interpreter,
        *,
        key: Optional[KeyMaterial] = None,
    ) -> Entry:
        """Ask *interpreter* about an entry and store its answer encrypted.

        Only decrypted plaintext is handed to the interpreter.
        """
        entry = await self.get_entry(entry_id, key=key)
        text = await interpreter(entry.content, {"emotions": list(entry.emotions), "tags": list(entry.tags)})
        if not text or not text.strip():
            raise InvalidInputError("Interpreter returned no text")
        return await self.update_entry(entry_id, EntryUpdate(interpretation=text.strip()), key=key)

    # -----------------------------------------------------------------
    # Migration (local -> remote)
    # -----------------------------------------------------------------

    async def migrate(self, user_id: str, key: Optional[KeyMaterial] = None) -> int:
        """Move every on-device entry into the remote store under *user_id*.

        Returns the number of entries migrated. On the first failure nothing
        is removed locally and MigrationError is raised; ids already written
        are kept in a cursor so a retry does not duplicate them.
        """
        if self.remote is None:
            logger.info("Migration skipped: no remote backend configured")
            return 0
        k = self._key(key)
        entries = await self.local.all_entries()
        if not entries:
            return 0

        done = set(await self.local.get_value(MIGRATION_CURSOR_KEY) or [])
        migrated = len(done & {e.id for e in entries})
        logger.info("Migrating %d local entries (%d already done)", len(entries), migrated)

        for entry in entries:
            if entry.id in done:
                continue
            try:
                await self._insert_migrated(replace(entry, user_id=user_id), k)
            except Exception as exc:
                logger.warning("Migration stopped at entry %s: %s", entry.id, exc)
                raise MigrationError(
                    f"Migration failed at entry {entry.id}; local entries kept",
                    entry_id=entry.id,
                    migrated=migrated,
                ) from exc
            done.add(entry.id)
            migrated += 1
            await self.local.set_value(MIGRATION_CURSOR_KEY, sorted(done))

        await self.local.clear_entries()
        await self.local.delete_value(MIGRATION_CURSOR_KEY)
        logger.info("Migration complete: %d entries", migrated)
        return migrated

    async def _insert_migrated(self, entry: Entry, key: KeyMaterial) -> None:
        """Insert one migrated entry.

        A duplicate only counts as done when the remote row is this entry,
        written by an earlier run for the same owner.
        """
        try:
            await self.remote.create_entry(codec.encrypt_entry(entry, key))
        except DuplicateRecordError:
            try:
                existing = await self.remote.get_entry(entry.id)
            except RecordNotFoundError:
                existing = None
            if existing is None or existing.user_id != entry.user_id:
                raise
            logger.info("Entry %s already present remotely", entry.id)


# ---------------------------------------------------------------------
# Process context
# ---------------------------------------------------------------------

@dataclass
class AppContext:
    """Everything a session needs, built once at process start."""

    settings: Settings
    local: LocalStore
    keys: KeyManager
    facade: PersistenceFacade
    remote: Optional[RemoteStore] = None

    @property
    def mode(self) -> Mode:
        return self.facade.mode


def build_context(settings: Settings) -> AppContext:
    """Wire the stores for *settings*; the backend mode is fixed from here on."""
    local = LocalStore(settings.local_db_path)
    keys = KeyManager(local)
    backend = settings.backend
    remote = None
    if isinstance(backend, RemoteBackend):
        remote = RemoteStore(backend.url, backend.api_key, backend.access_token)
    facade = PersistenceFacade(local, keys, remote)
    return AppContext(settings=settings, local=local, keys=keys, facade=facade, remote=remote)
