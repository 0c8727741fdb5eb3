# -*- coding: utf-8 -*-
"""Remote relational store (Supabase / PostgREST) for DreamWeaver.

Everything sent here is already encrypted by the codec except ids, dates,
timestamps and the subscription tier. The backend never sees plaintext or
keys, so it cannot filter on tags or content; that happens client-side.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

import httpx

from .errors import (
    BackendError,
    BackendPermissionError,
    BackendUnavailableError,
    DuplicateRecordError,
    InvalidInputError,
    RecordNotFoundError,
    UnknownBackendError,
)
from .models import EncryptedEntry, EntryStats, SubscriptionTier, User, utcnow

logger = logging.getLogger(__name__)

USERS_TABLE = "users"
ENTRIES_TABLE = "dream_entries"
STATS_RPC = "rpc/get_user_stats"

USER_AGENT = "DreamWeaver/0.1"

# PostgREST/Postgres codes -> error class
_DUPLICATE_CODES = {"23505"}
_PERMISSION_CODES = {"42501"}
_UNAVAILABLE_CODES = {"PGRST000", "PGRST001", "PGRST002", "PGRST003"}
_UNAVAILABLE_STATUS = {502, 503, 504}


# ---------------------------------------------------------------------
# Schema (provisioned once on the backend, e.g. as a Supabase migration)
# ---------------------------------------------------------------------

REMOTE_SCHEMA_SQL = """
CREATE TYPE subscription_tier AS ENUM ('free', 'pro', 'premium');

CREATE TABLE IF NOT EXISTS users (
    id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    external_id        TEXT UNIQUE,
    email              TEXT NOT NULL,
    subscription_tier  subscription_tier NOT NULL DEFAULT 'free',
    created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at         TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS dream_entries (
    id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id         UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    dream_date      DATE NOT NULL,

    -- Envelopes: <hex iv>:<base64 ciphertext>
    dream_text      TEXT NOT NULL,
    interpretation  TEXT,
    tags            TEXT[] NOT NULL DEFAULT '{}',
    emotions        TEXT[] NOT NULL DEFAULT '{}',

    is_deleted      BOOLEAN NOT NULL DEFAULT false,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_dream_entries_user
    ON dream_entries(user_id, created_at DESC) WHERE NOT is_deleted;

CREATE OR REPLACE FUNCTION touch_updated_at() RETURNS trigger AS $$
BEGIN
    NEW.updated_at = GREATEST(now(), NEW.created_at);
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

CREATE TRIGGER dream_entries_touch BEFORE UPDATE ON dream_entries
    FOR EACH ROW EXECUTE FUNCTION touch_updated_at();
CREATE TRIGGER users_touch BEFORE UPDATE ON users
    FOR EACH ROW EXECUTE FUNCTION touch_updated_at();

CREATE OR REPLACE FUNCTION get_user_stats(user_uuid UUID)
RETURNS JSON AS $$
    SELECT json_build_object(
        'total_dreams', count(*),
        'dreams_with_interpretation', count(*) FILTER (WHERE interpretation IS NOT NULL),
        'dreams_this_month', count(*) FILTER (WHERE created_at >= date_trunc('month', now())),
        'dreams_this_week', count(*) FILTER (
            WHERE created_at >= date_trunc('day', now()) - (extract(dow FROM now()) * interval '1 day')),
        'oldest_dream', min(dream_date),
        'newest_dream', max(dream_date)
    )
    FROM dream_entries
    WHERE user_id = user_uuid AND NOT is_deleted;
$$ LANGUAGE sql STABLE SECURITY INVOKER;

ALTER TABLE users ENABLE ROW LEVEL SECURITY;
ALTER TABLE dream_entries ENABLE ROW LEVEL SECURITY;
"""


# ---------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------

def error_from_response(resp: httpx.Response) -> BackendError:
    """Classify a failed PostgREST response into the backend error taxonomy."""
    try:
        payload = resp.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    code = str(payload.get("code") or "") or None
    message = payload.get("message") or resp.text or f"HTTP {resp.status_code}"

    # 409 also carries FK violations (23503); only a unique violation is a duplicate
    if code in _DUPLICATE_CODES or (code is None and resp.status_code == 409):
        return DuplicateRecordError("This record already exists.", code=code)
    if (
        code in _PERMISSION_CODES
        or (code or "").startswith("PGRST3")
        or resp.status_code in (401, 403)
    ):
        return BackendPermissionError("Permission denied. Please check your authentication.", code=code)
    if code in _UNAVAILABLE_CODES or resp.status_code in _UNAVAILABLE_STATUS:
        return BackendUnavailableError("Database connection failed. Please try again.", code=code)
    return UnknownBackendError(message, code=code)


# ---------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------

class RemoteStore:
    """CRUD, soft delete and stats over the encrypted remote representation."""

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not url or not api_key:
            raise InvalidInputError("Remote store URL and API key are required")
        self.base_url = url.rstrip("/") + "/rest/v1"
        self._api_key = api_key
        self._access_token = access_token or api_key
        self._transport = transport

    # -----------------------------------------------------------------
    # HTTP helpers
    # -----------------------------------------------------------------

    def _build_headers(self) -> Dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _client(self) -> httpx.AsyncClient:
        # No per-request timeout: callers impose their own.
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._build_headers(),
            transport=self._transport,
            timeout=None,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: str = "return=representation",
    ) -> Any:
        """Execute one request and return the decoded JSON body (or None)."""
        try:
            async with self._client() as client:
                resp = await client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    headers={"Prefer": prefer},
                )
        except httpx.TransportError as exc:
            logger.warning("Remote store unreachable (%s %s): %s", method, path, exc)
            raise BackendUnavailableError(f"Database connection failed: {exc}") from exc

        if resp.status_code >= 400:
            err = error_from_response(resp)
            logger.warning(
                "Remote store error on %s %s: HTTP %d code=%s",
                method, path, resp.status_code, err.code,
            )
            raise err
        if not resp.content:
            return None
        return resp.json()

    @staticmethod
    def _rows(data: Any) -> List[Dict[str, Any]]:
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    # -----------------------------------------------------------------
    # Entries
    # -----------------------------------------------------------------

    async def create_entry(self, record: EncryptedEntry) -> EncryptedEntry:
        """Insert *record*; timestamps and soft-delete flag are server-managed."""
        row = record.to_row()
        for name in ("created_at", "updated_at", "is_deleted"):
            row.pop(name, None)
        rows = self._rows(await self._request("POST", f"/{ENTRIES_TABLE}", json=row))
        if not rows:
            raise UnknownBackendError("Insert returned no row")
        return EncryptedEntry.from_row(rows[0])

    async def get_entry(self, entry_id: str) -> EncryptedEntry:
        rows = self._rows(await self._request(
            "GET",
            f"/{ENTRIES_TABLE}",
            params={"select": "*", "id": f"eq.{entry_id}", "is_deleted": "eq.false"},
        ))
        if not rows:
            raise RecordNotFoundError(f"Entry {entry_id} not found")
        return EncryptedEntry.from_row(rows[0])

    async def list_entries(self, user_id: str) -> List[EncryptedEntry]:
        """Live entries for *user_id*, newest-created first."""
        rows = self._rows(await self._request(
            "GET",
            f"/{ENTRIES_TABLE}",
            params={
                "select": "*",
                "user_id": f"eq.{user_id}",
                "is_deleted": "eq.false",
                "order": "created_at.desc",
            },
        ))
        return [EncryptedEntry.from_row(r) for r in rows]

    async def update_entry(self, entry_id: str, fields: Dict[str, Any]) -> EncryptedEntry:
        """Patch only the given columns; ``updated_at`` is always reassigned here."""
        payload = {
            k: v for k, v in fields.items()
            if k not in ("id", "user_id", "created_at", "updated_at", "is_deleted")
        }
        payload["updated_at"] = utcnow().isoformat()
        rows = self._rows(await self._request(
            "PATCH",
            f"/{ENTRIES_TABLE}",
            params={"id": f"eq.{entry_id}", "is_deleted": "eq.false"},
            json=payload,
        ))
        if not rows:
            raise RecordNotFoundError(f"Entry {entry_id} not found")
        return EncryptedEntry.from_row(rows[0])

    async def delete_entry(self, entry_id: str) -> None:
        """Soft delete: the row stays but disappears from every read."""
        await self._request(
            "PATCH",
            f"/{ENTRIES_TABLE}",
            params={"id": f"eq.{entry_id}"},
            json={"is_deleted": True, "updated_at": utcnow().isoformat()},
            prefer="return=minimal",
        )

    async def get_stats(self, user_id: str) -> EntryStats:
        data = await self._request("POST", f"/{STATS_RPC}", json={"user_uuid": user_id})
        rows = self._rows(data)
        return EntryStats.from_row(rows[0] if rows else {})

    # -----------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------

    async def create_user(
        self,
        email: str,
        external_id: Optional[str] = None,
        subscription_tier: SubscriptionTier = SubscriptionTier.FREE,
    ) -> User:
        row = {
            "email": email,
            "external_id": external_id,
            "subscription_tier": SubscriptionTier(subscription_tier).value,
        }
        rows = self._rows(await self._request("POST", f"/{USERS_TABLE}", json=row))
        if not rows:
            raise UnknownBackendError("Insert returned no row")
        return User.from_dict(rows[0])

    async def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        rows = self._rows(await self._request(
            "GET",
            f"/{USERS_TABLE}",
            params={"select": "*", "external_id": f"eq.{external_id}"},
        ))
        return User.from_dict(rows[0]) if rows else None

    async def update_user(self, user_id: str, changes: Dict[str, Any]) -> User:
        allowed = {"email", "external_id", "subscription_tier"}
        unknown = set(changes) - allowed
        if unknown:
            raise InvalidInputError(f"Cannot update user fields: {sorted(unknown)}")
        payload = dict(changes)
        if "subscription_tier" in payload:
            payload["subscription_tier"] = SubscriptionTier(payload["subscription_tier"]).value
        payload["updated_at"] = utcnow().isoformat()
        rows = self._rows(await self._request(
            "PATCH",
            f"/{USERS_TABLE}",
            params={"id": f"eq.{user_id}"},
            json=payload,
        ))
        if not rows:
            raise RecordNotFoundError(f"User {user_id} not found")
        return User.from_dict(rows[0])
