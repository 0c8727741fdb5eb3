# -*- coding: utf-8 -*-
"""Per-user key lifecycle.

Only the salt is persisted (in the device-local store). The key is derived
from salt + passphrase on every unlock and held in memory for the session.
Losing the passphrase makes existing ciphertext unreadable; there is no
recovery path.
"""
from __future__ import annotations

from typing import Dict, Optional
import logging

from .crypto import derive_key, generate_salt
from .db import KEY_INFO_KEY, LocalStore
from .errors import InvalidInputError, KeyNotLoadedError
from .models import KeyInfo, utcnow

logger = logging.getLogger(__name__)


class KeyManager:
    """Stores salt info per user and holds the current session key."""

    def __init__(self, store: LocalStore) -> None:
        self._store = store
        self._key: Optional[bytes] = None
        self._user_id: Optional[str] = None

    # -----------------------------------------------------------------
    # Persisted salt info
    # -----------------------------------------------------------------

    async def _load_slot(self) -> Dict[str, Dict]:
        return await self._store.get_value(KEY_INFO_KEY) or {}

    async def store_key_info(self, user_id: str, salt: str) -> KeyInfo:
        if not user_id or not salt:
            raise InvalidInputError("User id and salt are required")
        info = KeyInfo(user_id=user_id, salt=salt, derived_at=utcnow())
        await self._store.update_value(
            KEY_INFO_KEY, lambda slot: {**(slot or {}), user_id: info.to_dict()}
        )
        return info

    async def get_key_info(self, user_id: str) -> Optional[KeyInfo]:
        """Return the salt info for *user_id*, or None.

        A stored record whose owner does not match is treated as absent.
        """
        data = (await self._load_slot()).get(user_id)
        if not data or data.get("user_id") != user_id:
            return None
        return KeyInfo.from_dict(data)

    async def clear_key_info(self, user_id: Optional[str] = None) -> None:
        """Forget salt info (one user, or every user on this device) and the session key."""
        if user_id is None:
            await self._store.delete_value(KEY_INFO_KEY)
        else:
            await self._store.update_value(
                KEY_INFO_KEY,
                lambda slot: {k: v for k, v in (slot or {}).items() if k != user_id} or None,
            )
        if user_id is None or user_id == self._user_id:
            self.lock()

    async def initialize_user_keys(self, user_id: str) -> str:
        """Generate, persist and return a new salt.

        Overwrites any existing salt for this user, which makes ciphertext
        derived from the old one unreadable. Prefer :meth:`ensure_user_keys`.
        """
        salt = generate_salt()
        await self.store_key_info(user_id, salt)
        logger.info("Initialized key-derivation salt for user %s", user_id)
        return salt

    async def ensure_user_keys(self, user_id: str) -> str:
        info = await self.get_key_info(user_id)
        if info is not None:
            return info.salt
        return await self.initialize_user_keys(user_id)

    # -----------------------------------------------------------------
    # Session key
    # -----------------------------------------------------------------

    async def unlock(self, user_id: str, passphrase: str) -> bytes:
        """Derive the session key for *user_id* and hold it in memory."""
        salt = await self.ensure_user_keys(user_id)
        self._key = derive_key(passphrase, salt)
        self._user_id = user_id
        return self._key

    def lock(self) -> None:
        self._key = None
        self._user_id = None

    @property
    def key(self) -> Optional[bytes]:
        return self._key

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def require_key(self) -> bytes:
        if self._key is None:
            raise KeyNotLoadedError("Encryption key not loaded; unlock with your passphrase first")
        return self._key
