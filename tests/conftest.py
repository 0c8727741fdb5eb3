"""
Shared pytest fixtures for the DreamWeaver test suite.

The remote store is exercised against ``FakePostgrest``: an in-memory
stand-in for the handful of PostgREST endpoints the RemoteStore uses,
mounted through ``httpx.MockTransport``. Local stores live in ``tmp_path``.
"""

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from dreamweaver.db import LocalStore
from dreamweaver.keys import KeyManager
from dreamweaver.remote import RemoteStore

REMOTE_URL = "https://dreams.example.supabase.co"
API_KEY = "anon-test-key"

KEY = bytes(range(32))
OTHER_KEY = bytes(range(1, 33))


class FakePostgrest:
    """Tiny PostgREST emulation: eq filters, order, Prefer, one RPC."""

    def __init__(self) -> None:
        self.tables: Dict[str, List[dict]] = {"users": [], "dream_entries": []}
        self.requests: List[httpx.Request] = []
        # entry insert attempt number (1-based) -> (status, error payload)
        self.fail_entry_inserts: Dict[int, Tuple[int, dict]] = {}
        self.entry_inserts = 0
        self._tick = 0
        self._base = datetime.now(timezone.utc) - timedelta(minutes=5)

    @property
    def entries(self) -> List[dict]:
        return self.tables["dream_entries"]

    @property
    def users(self) -> List[dict]:
        return self.tables["users"]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def _now(self) -> str:
        self._tick += 1
        return (self._base + timedelta(seconds=self._tick)).isoformat()

    @staticmethod
    def _matches(row: dict, params: httpx.QueryParams) -> bool:
        for name, value in params.multi_items():
            if name in ("select", "order"):
                continue
            assert value.startswith("eq."), value
            expected = value[3:]
            actual = row.get(name)
            if isinstance(actual, bool):
                actual = "true" if actual else "false"
            if str(actual) != expected:
                return False
        return True

    def _insert(self, table: str, row: dict) -> httpx.Response:
        rows = self.tables[table]
        if table == "dream_entries":
            self.entry_inserts += 1
            failure = self.fail_entry_inserts.get(self.entry_inserts)
            if failure is not None:
                status, payload = failure
                return httpx.Response(status, json=payload)
        row = dict(row)
        row.setdefault("id", str(uuid.uuid4()))
        if any(r["id"] == row["id"] for r in rows):
            return httpx.Response(409, json={"code": "23505", "message": "duplicate key value"})
        if table == "users":
            if row.get("external_id") and any(r.get("external_id") == row["external_id"] for r in rows):
                return httpx.Response(409, json={"code": "23505", "message": "duplicate key value"})
            row.setdefault("subscription_tier", "free")
        else:
            row.setdefault("interpretation", None)
            row.setdefault("tags", [])
            row.setdefault("emotions", [])
            row["is_deleted"] = False
        row["created_at"] = row["updated_at"] = self._now()
        rows.append(row)
        return httpx.Response(201, json=[dict(row)])

    def _stats(self, user_id: str) -> dict:
        live = [r for r in self.entries if r["user_id"] == user_id and not r["is_deleted"]]
        dates = sorted(r["dream_date"] for r in live)
        return {
            "total_dreams": len(live),
            "dreams_with_interpretation": sum(1 for r in live if r.get("interpretation")),
            "dreams_this_month": len(live),
            "dreams_this_week": len(live),
            "oldest_dream": dates[0] if dates else None,
            "newest_dream": dates[-1] if dates else None,
        }

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.split("/rest/v1/", 1)[1]
        body = json.loads(request.content) if request.content else None
        params = request.url.params

        if table == "rpc/get_user_stats":
            return httpx.Response(200, json=self._stats(body["user_uuid"]))

        if request.method == "POST":
            return self._insert(table, body)

        matched = [r for r in self.tables[table] if self._matches(r, params)]
        if request.method == "GET":
            if params.get("order") == "created_at.desc":
                matched.sort(key=lambda r: r["created_at"], reverse=True)
            return httpx.Response(200, json=[dict(r) for r in matched])

        if request.method == "PATCH":
            for r in matched:
                r.update(body)
            if "return=minimal" in request.headers.get("Prefer", ""):
                return httpx.Response(204)
            return httpx.Response(200, json=[dict(r) for r in matched])

        return httpx.Response(405, json={"message": "method not allowed"})


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def backend():
    return FakePostgrest()


@pytest.fixture
def remote(backend):
    """RemoteStore talking to the in-memory backend."""
    return RemoteStore(REMOTE_URL, API_KEY, transport=backend.transport())


@pytest.fixture
def local(tmp_path):
    """LocalStore backed by a temp SQLite file."""
    return LocalStore(str(tmp_path / "local.sqlite3"))


@pytest.fixture
def keys(local):
    return KeyManager(local)


def remote_with(handler) -> RemoteStore:
    """RemoteStore whose every request is answered by *handler*."""
    return RemoteStore(REMOTE_URL, API_KEY, transport=httpx.MockTransport(handler))


def first_failure(status: int, code: Optional[str], message: str = "failure") -> Tuple[int, dict]:
    payload = {"message": message}
    if code is not None:
        payload["code"] = code
    return status, payload
