"""Tests for the config store, access control, identity extraction and state."""

import asyncio
import json
import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.access import AccessControl, PairStatus, Role
from core.config_store import AppConfig, ConfigStore, SecurityConfig
from core.errors import StoreError
from core.identity import get_identity
from core.pin import hash_pin
from core.state import BotState
from bot.models import InboundMessage


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def store() -> ConfigStore:
    return ConfigStore(AppConfig(pairing_code="TEST42"))


@pytest.fixture()
def access(store) -> AccessControl:
    return AccessControl(store)


# ── ConfigStore ──────────────────────────────────────────────────────────────


class TestConfigStore:
    def test_defaults(self, store) -> None:
        assert store.get("allowed_users") == []
        assert store.get("owner_id") is None
        assert store.get("security").pin_max_attempts == 3

    def test_generated_pairing_code(self) -> None:
        code = AppConfig().pairing_code
        assert len(code) == 6
        assert code.isalnum() and code.upper() == code

    def test_unknown_key(self, store) -> None:
        with pytest.raises(KeyError):
            store.get("nope")
        with pytest.raises(KeyError):
            store.set("nope", 1)
        with pytest.raises(KeyError):
            store.update({"owner_id": "1", "nope": 1})
        assert store.get("owner_id") is None

    def test_set_validates(self, store) -> None:
        with pytest.raises(ValueError):
            store.set("security", {"pin_max_attempts": 0})
        assert store.get("security").pin_max_attempts == 3

    def test_load_creates_default_file(self, tmp_path) -> None:
        path = tmp_path / "multis" / "config.json"
        store = ConfigStore.load(str(path))
        assert path.exists()
        assert json.loads(path.read_text())["pairing_code"] == store.get("pairing_code")

    def test_set_persists(self, tmp_path) -> None:
        path = tmp_path / "config.json"
        store = ConfigStore.load(str(path))
        store.set("owner_id", "42")
        store.set("security", SecurityConfig(pin_hash=hash_pin("1234")))
        reloaded = ConfigStore.load(str(path))
        assert reloaded.get("owner_id") == "42"
        assert reloaded.get("security").pin_hash == hash_pin("1234")
        assert not list(tmp_path.glob("*.tmp"))

    def test_invalid_json(self, tmp_path) -> None:
        path = tmp_path / "config.json"
        path.write_text("{ not json")
        with pytest.raises(ValueError, match="Invalid JSON"):
            ConfigStore.load(str(path))

    def test_invalid_schema(self, tmp_path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"allowed_users": "everyone"}))
        with pytest.raises(ValueError, match="Invalid config"):
            ConfigStore.load(str(path))


# ── AccessControl ────────────────────────────────────────────────────────────


class TestAccessControl:
    @pytest.mark.asyncio
    async def test_first_pairing_becomes_owner(self, access, store) -> None:
        result = await access.pair("user1", "TEST42")
        assert result.status is PairStatus.OWNER
        assert store.get("owner_id") == "user1"
        assert access.resolve_role("user1") is Role.OWNER

    @pytest.mark.asyncio
    async def test_later_pairing_is_plain_user(self, access) -> None:
        await access.pair("user1", "TEST42")
        result = await access.pair("user2", "test42")
        assert result.status is PairStatus.PAIRED
        assert access.resolve_role("user2") is Role.PAIRED

    @pytest.mark.asyncio
    async def test_invalid_code(self, access, store) -> None:
        result = await access.pair("user1", "WRONG")
        assert result.status is PairStatus.INVALID_CODE
        assert store.get("allowed_users") == []
        assert access.resolve_role("user1") is Role.STRANGER

    @pytest.mark.asyncio
    async def test_already_paired(self, access) -> None:
        await access.pair("user1", "TEST42")
        assert (await access.pair("user1", "TEST42")).status is PairStatus.ALREADY_PAIRED

    @pytest.mark.asyncio
    async def test_concurrent_pairing_single_owner(self, access, store) -> None:
        results = await asyncio.gather(*(access.pair(f"u{i}", "TEST42") for i in range(5)))
        assert [r.status for r in results].count(PairStatus.OWNER) == 1
        assert len(store.get("allowed_users")) == 5

    @pytest.mark.asyncio
    async def test_owner_unpair_releases_slot(self, access, store) -> None:
        await access.pair("user1", "TEST42")
        assert await access.unpair("user1")
        assert store.get("owner_id") is None
        assert access.resolve_role("user1") is Role.STRANGER
        assert (await access.pair("user2", "TEST42")).status is PairStatus.OWNER

    @pytest.mark.asyncio
    async def test_owner_pairing_is_one_write(self, access, store) -> None:
        with patch.object(store, "save") as mock_save:
            await access.pair("user1", "TEST42")
        mock_save.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_write_leaves_no_half_pairing(self, access, store) -> None:
        with patch.object(store, "save", side_effect=StoreError("disk full")):
            with pytest.raises(StoreError):
                await access.pair("user1", "TEST42")
        assert store.get("allowed_users") == []
        assert store.get("owner_id") is None
        assert (await access.pair("user1", "TEST42")).status is PairStatus.OWNER

    @pytest.mark.asyncio
    async def test_unpair_unknown(self, access) -> None:
        assert await access.unpair("ghost") is False

    def test_owner_not_in_allowed_users_is_stranger(self) -> None:
        access = AccessControl(ConfigStore(AppConfig(owner_id="user1")))
        assert access.resolve_role("user1") is Role.STRANGER


# ── Identity / inbound messages ──────────────────────────────────────────────


class TestIdentity:
    def test_flat_shape(self) -> None:
        assert get_identity({"sender_id": 7, "chat_id": "c7"}) == ("7", "c7")

    def test_telegram_shape(self) -> None:
        update = {"update_id": 1, "message": {"chat": {"id": -100}, "from": {"id": 42, "first_name": "Ann"}, "text": "hi"}}
        assert get_identity(update) == ("42", "-100")

    def test_sender_chat_priority(self) -> None:
        update = {"message": {"chat": {"id": -100}, "from": {"id": 1}, "sender_chat": {"id": -200}}}
        assert get_identity(update) == ("-200", "-100")

    def test_no_message(self) -> None:
        assert get_identity({"update_id": 3}) is None

    def test_inbound_from_update(self) -> None:
        update = {"message": {"chat": {"id": 5}, "from": {"id": 9, "username": "ann"}, "text": "/ask hours?"}}
        message = InboundMessage.from_update(update)
        assert message.chat_id == "5"
        assert message.sender_id == "9"
        assert message.sender_name == "ann"
        assert message.text == "/ask hours?"
        assert message.route_as == "personal"

    def test_inbound_business_flat(self) -> None:
        message = InboundMessage.from_update({"sender_id": "c1", "chat_id": "cc", "text": "refund", "route_as": "business"})
        assert message.route_as == "business"

    def test_inbound_without_identity(self) -> None:
        assert InboundMessage.from_update({}) is None


# ── BotState ─────────────────────────────────────────────────────────────────


class TestBotState:
    def test_load_from_path(self, tmp_path) -> None:
        state = BotState.load(str(tmp_path / "config.json"))
        assert state.access.allowed_users == []
        assert not state.pins.enabled

    def test_set_pin_rebinds_policies(self, store) -> None:
        state = BotState(store)
        state.set_pin("2468")
        assert state.pins.enabled
        assert state.config.security.pin_hash == hash_pin("2468")
        assert state.pins.config is state.config.security

    def test_reload_policies_after_set(self, store) -> None:
        state = BotState(store)
        escalation = state.config.business.escalation.model_copy(update={"max_retries_before_escalate": 5})
        business = state.config.business.model_copy(update={"escalation": escalation})
        store.set("business", business)
        state.reload_policies()
        assert state.escalation.config.max_retries_before_escalate == 5
