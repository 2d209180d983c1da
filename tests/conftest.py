"""
Shared fixtures: a handful of state types covering every persist mode and
action mode, plus registries wired to in-memory backends.
"""

import asyncio
from typing import Annotated, List, Optional

import pytest

from livestate import (
    ActionMode,
    DatabaseStorage,
    InProcessBus,
    Observable,
    PersistMode,
    State,
    StateRegistry,
    StateScope,
    action,
    computed,
    state,
)


@state
class CounterState(State):
    count: Annotated[int, Observable()] = 0
    clicks: int = 0  # scratch, never serialized

    @computed
    def doubled(self) -> int:
        return self.count * 2

    @action
    def increment(self, by: int = 1):
        self.count += by
        return self.count

    @action
    def reset(self):
        self.count = 0

    @action(mode=ActionMode.CLIENT)
    def toggle_panel(self):
        pass

    @action(mode=ActionMode.BACKGROUND)
    async def recount(self, target: int):
        await asyncio.sleep(0)
        self.count = target

    @action(debounce=300)
    def search(self, query: str):
        return query

    @action(confirm="Reset everything?")
    def wipe(self):
        self.count = 0

    @action
    def explode(self):
        raise RuntimeError("quota exceeded")


@state(persist=PersistMode.DATABASE, scope=StateScope.GLOBAL)
class InventoryState(State):
    items: Annotated[List[str], Observable()] = []
    total: Annotated[int, Observable()] = 0

    @action
    def add(self, item: str, note: Optional[str] = None):
        self.items = [*self.items, item]
        self.total = len(self.items)


@state(persist=PersistMode.NONE, sync=False)
class ScratchState(State):
    value: Annotated[int, Observable()] = 0


@state(persist=PersistMode.LOCAL)
class PrefsState(State):
    theme: Annotated[str, Observable()] = "light"


@pytest.fixture
def bus():
    return InProcessBus()


@pytest.fixture
def database():
    return DatabaseStorage.from_url("sqlite://")


@pytest.fixture
def registry(bus, database):
    registry = StateRegistry(storages={PersistMode.DATABASE: database}, bus=bus)
    for state_type in (CounterState, InventoryState, ScratchState, PrefsState):
        registry.register(state_type)
    return registry


@pytest.fixture
def context(registry):
    return registry.context("session-1")
