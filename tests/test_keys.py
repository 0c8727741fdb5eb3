# Tests for per-user salt storage and the session key

import asyncio

import pytest

from dreamweaver.crypto import decrypt, derive_key, encrypt
from dreamweaver.db import KEY_INFO_KEY
from dreamweaver.errors import InvalidInputError, KeyNotLoadedError


class TestKeyInfo:
    @pytest.mark.asyncio
    async def test_initialize_persists_salt(self, keys):
        salt = await keys.initialize_user_keys("alice")
        info = await keys.get_key_info("alice")
        assert info is not None
        assert info.user_id == "alice"
        assert info.salt == salt
        assert info.derived_at is not None

    @pytest.mark.asyncio
    async def test_missing_info_is_absent(self, keys):
        assert await keys.get_key_info("nobody") is None

    @pytest.mark.asyncio
    async def test_other_user_info_is_not_returned(self, keys):
        await keys.store_key_info("bob", "bob-salt")
        assert await keys.get_key_info("alice") is None
        assert (await keys.get_key_info("bob")).salt == "bob-salt"

    @pytest.mark.asyncio
    async def test_second_user_does_not_overwrite_first(self, keys):
        alice_salt = await keys.initialize_user_keys("alice")
        await keys.initialize_user_keys("bob")
        assert (await keys.get_key_info("alice")).salt == alice_salt

    @pytest.mark.asyncio
    async def test_mismatched_owner_record_is_absent(self, keys, local):
        await local.set_value(KEY_INFO_KEY, {"alice": {"user_id": "mallory", "salt": "s"}})
        assert await keys.get_key_info("alice") is None

    @pytest.mark.asyncio
    async def test_reinitialize_overwrites_salt(self, keys):
        first = await keys.initialize_user_keys("alice")
        second = await keys.initialize_user_keys("alice")
        assert first != second
        assert (await keys.get_key_info("alice")).salt == second

    @pytest.mark.asyncio
    async def test_ensure_is_idempotent(self, keys):
        first = await keys.ensure_user_keys("alice")
        assert await keys.ensure_user_keys("alice") == first

    @pytest.mark.asyncio
    async def test_store_rejects_empty(self, keys):
        with pytest.raises(InvalidInputError):
            await keys.store_key_info("", "salt")

    @pytest.mark.asyncio
    async def test_clear_all(self, keys):
        await keys.initialize_user_keys("alice")
        await keys.initialize_user_keys("bob")
        await keys.clear_key_info()
        assert await keys.get_key_info("alice") is None
        assert await keys.get_key_info("bob") is None

    @pytest.mark.asyncio
    async def test_clear_one_user(self, keys):
        await keys.initialize_user_keys("alice")
        bob_salt = await keys.initialize_user_keys("bob")
        await keys.clear_key_info("alice")
        assert await keys.get_key_info("alice") is None
        assert (await keys.get_key_info("bob")).salt == bob_salt

    @pytest.mark.asyncio
    async def test_concurrent_stores_keep_every_user(self, keys):
        await asyncio.gather(
            keys.store_key_info("alice", "alice-salt"),
            keys.store_key_info("bob", "bob-salt"),
            keys.store_key_info("carol", "carol-salt"),
        )
        for name in ("alice", "bob", "carol"):
            assert (await keys.get_key_info(name)).salt == f"{name}-salt"

    @pytest.mark.asyncio
    async def test_concurrent_clear_and_store(self, keys):
        await keys.store_key_info("alice", "alice-salt")
        await asyncio.gather(
            keys.clear_key_info("alice"),
            keys.store_key_info("bob", "bob-salt"),
        )
        assert await keys.get_key_info("alice") is None
        assert (await keys.get_key_info("bob")).salt == "bob-salt"

    @pytest.mark.asyncio
    async def test_key_is_never_persisted(self, keys, local):
        key = await keys.unlock("alice", "passphrase")
        slot = await local.get_value(KEY_INFO_KEY)
        assert key.hex() not in repr(slot)
        assert set(slot["alice"]) == {"user_id", "salt", "derived_at"}


class TestSessionKey:
    @pytest.mark.asyncio
    async def test_unlock_matches_derivation(self, keys):
        key = await keys.unlock("alice", "passphrase")
        salt = (await keys.get_key_info("alice")).salt
        assert key == derive_key("passphrase", salt)
        assert keys.key == key
        assert keys.user_id == "alice"

    @pytest.mark.asyncio
    async def test_unlock_again_reproduces_key(self, keys):
        first = await keys.unlock("alice", "passphrase")
        keys.lock()
        second = await keys.unlock("alice", "passphrase")
        assert first == second
        assert decrypt(encrypt("dream", first), second) == "dream"

    @pytest.mark.asyncio
    async def test_wrong_passphrase_gives_other_key(self, keys):
        good = await keys.unlock("alice", "passphrase")
        bad = await keys.unlock("alice", "not it")
        assert good != bad

    def test_require_key_when_locked(self, keys):
        with pytest.raises(KeyNotLoadedError):
            keys.require_key()

    @pytest.mark.asyncio
    async def test_logout_forgets_key(self, keys):
        await keys.unlock("alice", "passphrase")
        await keys.clear_key_info()
        assert keys.key is None
        with pytest.raises(KeyNotLoadedError):
            keys.require_key()

    @pytest.mark.asyncio
    async def test_clearing_other_user_keeps_session(self, keys):
        await keys.initialize_user_keys("bob")
        await keys.unlock("alice", "passphrase")
        await keys.clear_key_info("bob")
        assert keys.user_id == "alice"
        assert keys.key is not None
