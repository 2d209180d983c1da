"""
Tests for StateRegistry and StateContext.
"""

from typing import Annotated

import pytest

from livestate import (
    ConfigError,
    EphemeralStorage,
    LiveStateConfig,
    NotFoundError,
    Observable,
    PersistMode,
    State,
    StateRegistry,
    state,
)
from livestate.config import Environment
from livestate.persistence import SHARED_SESSION_ID
from livestate.persistence import DatabaseStorage

from conftest import CounterState, InventoryState


class TestRegistration:
    def test_names(self, registry):
        assert registry.names == ["counter", "inventory", "scratch", "prefs"]
        assert registry.has("counter")
        assert registry.entry("counter").state_type is CounterState

    def test_register_is_idempotent_for_same_type(self, registry):
        first = registry.entry("counter")
        assert registry.register(CounterState) is first

    def test_name_conflict(self, registry):
        @state(name="counter")
        class OtherCounterState(State):
            pass

        with pytest.raises(ConfigError, match="already registered"):
            registry.register(OtherCounterState)

    def test_explicit_name(self):
        registry = StateRegistry()
        entry = registry.register(CounterState, name="clicks")
        assert entry.name == "clicks"
        assert registry.has("clicks")

    def test_database_state_needs_durable_storage(self):
        with pytest.raises(ConfigError, match="durable"):
            StateRegistry().register(InventoryState)

    def test_undecorated_type(self):
        class Plain(State):
            pass

        with pytest.raises(ConfigError):
            StateRegistry().register(Plain)

    def test_unknown_state(self, registry):
        with pytest.raises(NotFoundError):
            registry.entry("missing")

    def test_actions_metadata(self, registry):
        metadata = registry.get_actions_metadata()
        assert set(metadata) == {"counter", "inventory", "scratch", "prefs"}
        assert metadata["inventory"]["add"]["mode"] == "server"
        assert metadata["scratch"] == {}


class TestContext:
    def test_defaults_on_first_load(self, context):
        counter = context.get_state("counter")
        assert counter.count == 0
        assert context.loaded == ["counter"]

    def test_proxy_is_cached_per_context(self, context):
        assert context.get_state("counter") is context.get_state("counter")

    def test_round_trip_between_requests(self, registry):
        first = registry.context("session-1")
        counter = first.get_state("counter")
        for _ in range(5):
            counter.increment()

        second = registry.context("session-1")
        assert second.get_state("counter").count == 5
        assert registry.context("session-2").get_state("counter").count == 0

    def test_global_state_is_shared_between_sessions(self, registry, database):
        registry.context("session-1").get_state("inventory").add(item="apple")
        assert database.get(SHARED_SESSION_ID, "inventory") == {"items": ["apple"], "total": 1}
        assert database.get("session-1", "inventory") == {}
        assert registry.context("session-2").get_state("inventory").items == ["apple"]

    def test_none_and_local_states_start_fresh(self, registry):
        context = registry.context("session-1")
        context.get_state("scratch").value = 3
        context.get_state("prefs").theme = "dark"
        context.get_state("scratch").persist()
        context.get_state("prefs").persist()

        fresh = registry.context("session-1")
        assert fresh.get_state("scratch").value == 0
        assert fresh.get_state("prefs").theme == "light"

    def test_invalid_stored_data_falls_back_to_defaults(self, registry):
        registry.storage_for(PersistMode.SESSION).save("session-1", "counter", {"count": "many"})
        assert registry.context("session-1").get_state("counter").count == 0

    def test_unknown_stored_keys_are_ignored(self, registry):
        registry.storage_for(PersistMode.SESSION).save("session-1", "counter", {"count": 2, "legacy": True})
        assert registry.context("session-1").get_state("counter").count == 2

    def test_defaults_that_fail_validation(self):
        @state
        class RequiredState(State):
            label: Annotated[str, Observable()]

        registry = StateRegistry()
        registry.register(RequiredState)
        with pytest.raises(ConfigError):
            registry.context("s").get_state("required")

    def test_hydration_data_has_only_synced_states(self, context):
        context.get_state("counter").increment(by=2)
        context.get_state("scratch")
        assert context.get_hydration_data() == {"counter": {"count": 2, "doubled": 4}}

    def test_storage_for_none(self, registry):
        assert registry.storage_for(PersistMode.NONE) is None


class TestFromConfig:
    def test_memory_backends(self):
        registry = StateRegistry.from_config(LiveStateConfig())
        storage = registry.storages[PersistMode.SESSION]
        assert isinstance(storage, EphemeralStorage)
        assert PersistMode.DATABASE not in registry.storages

    def test_database_from_url(self):
        registry = StateRegistry.from_config(LiveStateConfig.for_environment(Environment.TESTING))
        assert isinstance(registry.storages[PersistMode.DATABASE], DatabaseStorage)
        registry.register(InventoryState)
