"""
Tests for the declaration layer: decorators, name derivation and schemas.
"""

from typing import Annotated

import pytest
from pydantic import Field

from livestate import ActionMode, ConfigError, Observable, PersistMode, State, StateScope, action, computed, state
from livestate.core import StateSchema, derive_state_name

from conftest import CounterState, InventoryState


class TestStateDecorator:
    def test_package_exports_the_decorator(self):
        import livestate
        import livestate.core

        assert callable(livestate.state)
        assert livestate.state is state
        assert livestate.core.state is state

    def test_defaults(self):
        descriptor = CounterState.__state_descriptor__
        assert descriptor.persist == PersistMode.SESSION
        assert descriptor.sync is True
        assert descriptor.scope == StateScope.USER
        assert descriptor.name is None

    def test_options(self):
        descriptor = InventoryState.__state_descriptor__
        assert descriptor.persist == PersistMode.DATABASE
        assert descriptor.scope == StateScope.GLOBAL

    def test_accepts_plain_strings(self):
        @state(persist="none", scope="page", name="tmp")
        class TmpState(State):
            pass

        descriptor = TmpState.__state_descriptor__
        assert descriptor.persist == PersistMode.NONE
        assert descriptor.scope == StateScope.PAGE
        assert descriptor.name == "tmp"

    def test_invalid_mode_is_rejected(self):
        with pytest.raises(ValueError):
            @state(persist="cloud")
            class BadState(State):
                pass


class TestNameDerivation:
    @pytest.mark.parametrize("class_name, expected", [
        ("CounterState", "counter"),
        ("ShoppingCartState", "shoppingCart"),
        ("Inventory", "inventory"),
        ("UIState", "uI"),
    ])
    def test_derive(self, class_name, expected):
        assert derive_state_name(class_name) == expected

    def test_bare_suffix_is_an_error(self):
        with pytest.raises(ConfigError):
            derive_state_name("State")


class TestSchemaFromClass:
    def test_tables(self):
        schema = StateSchema.from_class(CounterState)
        assert schema.observable == frozenset({"count"})
        assert set(schema.fields) == {"count", "clicks"}
        assert set(schema.computed) == {"doubled"}
        assert {"increment", "reset", "toggle_panel", "recount", "search", "wipe", "explode"} <= set(schema.actions)

    def test_action_specs(self):
        schema = StateSchema.from_class(CounterState)
        assert schema.actions["recount"].is_async
        assert schema.actions["recount"].descriptor.mode == ActionMode.BACKGROUND
        assert not schema.actions["increment"].is_async
        assert list(schema.actions["increment"].signature.parameters) == ["self", "by"]

    def test_actions_metadata(self):
        metadata = StateSchema.from_class(CounterState).actions_metadata()
        assert metadata["increment"] == {"mode": "server", "debounce": None, "confirm": None}
        assert metadata["search"]["debounce"] == 300
        assert metadata["wipe"]["confirm"] == "Reset everything?"
        assert metadata["toggle_panel"]["mode"] == "client"

    def test_alias_is_the_serialized_key(self):
        @state
        class AliasedState(State):
            item_count: Annotated[int, Observable(), Field(alias="itemCount")] = 0

        schema = StateSchema.from_class(AliasedState)
        assert schema.observable_keys() == {"item_count": "itemCount"}

    def test_inherited_actions(self):
        @state
        class BaseCounterState(State):
            count: Annotated[int, Observable()] = 0

            @action
            def increment(self):
                self.count += 1

        @state
        class LoudCounterState(BaseCounterState):
            @computed
            def shout(self) -> str:
                return f"{self.count}!"

        schema = StateSchema.from_class(LoudCounterState)
        assert "increment" in schema.actions
        assert "shout" in schema.computed

    def test_missing_descriptor(self):
        class Plain(State):
            pass

        with pytest.raises(ConfigError):
            StateSchema.from_class(Plain)

    def test_descriptor_is_not_inherited(self):
        class Child(CounterState):
            pass

        with pytest.raises(ConfigError):
            StateSchema.from_class(Child)


class TestSchemaFromMapping:
    class Plain(State):
        count: int = 0
        label: str = ""

        def increment(self, by: int = 1):
            self.count += by

        def doubled(self):
            return self.count * 2

    def test_equivalent_to_decorators(self):
        schema = StateSchema.from_mapping(self.Plain, {
            "name": "plain",
            "persist": "session",
            "observable": ["count"],
            "computed": {"doubled": {"cached": False}},
            "actions": {"increment": {"mode": "server", "debounce": 100}},
        })
        assert schema.descriptor.name == "plain"
        assert schema.observable == frozenset({"count"})
        assert not schema.computed["doubled"].descriptor.cached
        assert schema.actions["increment"].descriptor.debounce == 100

    def test_unknown_field(self):
        with pytest.raises(ConfigError):
            StateSchema.from_mapping(self.Plain, {"observable": ["missing"]})

    def test_unknown_method(self):
        with pytest.raises(ConfigError):
            StateSchema.from_mapping(self.Plain, {"actions": {"missing": {}}})

    def test_malformed_mapping(self):
        with pytest.raises(ConfigError):
            StateSchema.from_mapping(self.Plain, {"persist": "cloud"})
        with pytest.raises(ConfigError):
            StateSchema.from_mapping(self.Plain, {"unexpected": True})
