# Tests for the on-device fallback store

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from dreamweaver.db import ENTRIES_KEY, USER_KEY, LocalStore
from dreamweaver.errors import InvalidInputError, RecordNotFoundError
from dreamweaver.models import Entry, SubscriptionTier, compute_stats


def _entry(entry_id: str, user_id: str, **overrides) -> Entry:
    data = dict(
        id=entry_id,
        user_id=user_id,
        occurred_on=date(2024, 1, 10),
        content=f"dream {entry_id}",
    )
    data.update(overrides)
    return Entry(**data)


class TestKeyValue:
    @pytest.mark.asyncio
    async def test_set_get_delete(self, local):
        await local.set_value("k", {"a": [1, 2]})
        assert await local.get_value("k") == {"a": [1, 2]}
        await local.set_value("k", "replaced")
        assert await local.get_value("k") == "replaced"
        await local.delete_value("k")
        assert await local.get_value("k") is None

    @pytest.mark.asyncio
    async def test_values_survive_new_store_instance(self, local):
        await local.set_value("k", 42)
        assert await LocalStore(local.path).get_value("k") == 42

    @pytest.mark.asyncio
    async def test_update_value_serializes_writers(self, local):
        await asyncio.gather(*(
            local.update_value("counts", lambda cur, i=i: {**(cur or {}), str(i): i})
            for i in range(5)
        ))
        assert await local.get_value("counts") == {str(i): i for i in range(5)}

    @pytest.mark.asyncio
    async def test_update_value_none_deletes(self, local):
        await local.set_value("k", 1)
        assert await local.update_value("k", lambda cur: None) is None
        assert await local.get_value("k") is None


class TestUsers:
    @pytest.mark.asyncio
    async def test_create_and_get(self, local):
        user = await local.create_user("dreamer@example.com", "ext-1")
        assert (await local.get_user()).id == user.id
        assert (await local.get_user_by_external_id("ext-1")).id == user.id
        assert await local.get_user_by_external_id("ext-2") is None

    @pytest.mark.asyncio
    async def test_update_tier(self, local):
        user = await local.create_user("dreamer@example.com")
        updated = await local.update_user(user.id, {"subscription_tier": "pro"})
        assert updated.subscription_tier is SubscriptionTier.PRO
        assert (await local.get_value(USER_KEY))["subscription_tier"] == "pro"

    @pytest.mark.asyncio
    async def test_update_unknown_field(self, local):
        user = await local.create_user("dreamer@example.com")
        with pytest.raises(InvalidInputError):
            await local.update_user(user.id, {"id": "other"})

    @pytest.mark.asyncio
    async def test_update_unknown_user(self, local):
        await local.create_user("dreamer@example.com")
        with pytest.raises(RecordNotFoundError):
            await local.update_user("someone-else", {"email": "x@example.com"})


class TestEntries:
    @pytest.mark.asyncio
    async def test_create_requires_known_user(self, local):
        with pytest.raises(InvalidInputError):
            await local.create_entry(_entry("e1", "ghost"))

    @pytest.mark.asyncio
    async def test_create_assigns_timestamps(self, local):
        user = await local.create_user("dreamer@example.com")
        stale = datetime(2000, 1, 1, tzinfo=timezone.utc)
        entry = await local.create_entry(_entry("e1", user.id, created_at=stale, updated_at=stale))
        assert entry.created_at > stale
        assert entry.updated_at == entry.created_at

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, local):
        user = await local.create_user("dreamer@example.com")
        await local.create_entry(_entry("e1", user.id))
        with pytest.raises(InvalidInputError):
            await local.create_entry(_entry("e1", user.id))

    @pytest.mark.asyncio
    async def test_list_newest_first(self, local):
        user = await local.create_user("dreamer@example.com")
        for eid in ("e1", "e2", "e3"):
            await local.create_entry(_entry(eid, user.id))
        assert [e.id for e in await local.list_entries(user.id)] == ["e3", "e2", "e1"]

    @pytest.mark.asyncio
    async def test_list_scoped_to_user(self, local):
        user = await local.create_user("dreamer@example.com")
        await local.create_entry(_entry("e1", user.id))
        assert await local.list_entries("someone-else") == []

    @pytest.mark.asyncio
    async def test_stored_as_plaintext(self, local):
        user = await local.create_user("dreamer@example.com")
        await local.create_entry(_entry("e1", user.id, content="plain words"))
        raw = await local.get_value(ENTRIES_KEY)
        assert raw[0]["content"] == "plain words"

    @pytest.mark.asyncio
    async def test_labels_normalized(self, local):
        user = await local.create_user("dreamer@example.com")
        await local.create_entry(_entry("e1", user.id, tags=["owl", " owl ", "", "night"], emotions=["awe", "awe"]))
        stored = await local.get_entry("e1")
        assert stored.tags == ["owl", "night"]
        assert stored.emotions == ["awe"]
        updated = await local.update_entry("e1", {"tags": ["moon", "moon ", " "]})
        assert updated.tags == ["moon"]

    @pytest.mark.asyncio
    async def test_update_merges(self, local):
        user = await local.create_user("dreamer@example.com")
        created = await local.create_entry(_entry("e1", user.id, tags=["owl"], emotions=["awe"]))
        updated = await local.update_entry("e1", {"tags": ["owl", "night"]})
        assert updated.tags == ["owl", "night"]
        assert updated.emotions == ["awe"]
        assert updated.content == created.content
        assert updated.updated_at >= updated.created_at

    @pytest.mark.asyncio
    async def test_update_ignores_caller_timestamps(self, local):
        user = await local.create_user("dreamer@example.com")
        await local.create_entry(_entry("e1", user.id))
        past = datetime(1999, 1, 1, tzinfo=timezone.utc)
        updated = await local.update_entry("e1", {"updated_at": past, "content": "edited"})
        assert updated.updated_at > past
        assert (await local.get_entry("e1")).content == "edited"

    @pytest.mark.asyncio
    async def test_update_unknown_entry(self, local):
        with pytest.raises(RecordNotFoundError):
            await local.update_entry("missing", {"content": "x"})

    @pytest.mark.asyncio
    async def test_delete_is_permanent(self, local):
        user = await local.create_user("dreamer@example.com")
        await local.create_entry(_entry("e1", user.id))
        await local.create_entry(_entry("e2", user.id))
        await local.delete_entry("e1")
        await local.delete_entry("missing")
        assert [e.id for e in await local.all_entries()] == ["e2"]
        with pytest.raises(RecordNotFoundError):
            await local.get_entry("e1")

    @pytest.mark.asyncio
    async def test_clear_entries(self, local):
        user = await local.create_user("dreamer@example.com")
        await local.create_entry(_entry("e1", user.id))
        await local.clear_entries()
        assert await local.all_entries() == []

    @pytest.mark.asyncio
    async def test_stats(self, local):
        user = await local.create_user("dreamer@example.com")
        await local.create_entry(_entry("e1", user.id, occurred_on=date(2024, 1, 12)))
        await local.create_entry(
            _entry("e2", user.id, occurred_on=date(2024, 1, 15), interpretation="freedom")
        )
        stats = await local.get_stats(user.id)
        assert stats.total == 2
        assert stats.with_interpretation == 1
        assert stats.this_month == 2
        assert stats.this_week == 2
        assert stats.oldest == date(2024, 1, 12)
        assert stats.newest == date(2024, 1, 15)


class TestComputeStats:
    def test_empty(self):
        stats = compute_stats([])
        assert stats.total == 0
        assert stats.oldest is None and stats.newest is None

    def test_month_and_week_windows(self):
        # Wednesday 2024-05-15; week starts Sunday 2024-05-12
        now = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
        entries = [
            _entry("a", "u", created_at=now - timedelta(hours=1)),
            _entry("b", "u", created_at=datetime(2024, 5, 12, 0, 0, tzinfo=timezone.utc)),
            _entry("c", "u", created_at=datetime(2024, 5, 11, 23, 59, tzinfo=timezone.utc)),
            _entry("d", "u", created_at=datetime(2024, 4, 30, tzinfo=timezone.utc)),
        ]
        stats = compute_stats(entries, now=now)
        assert stats.total == 4
        assert stats.this_week == 2
        assert stats.this_month == 3
