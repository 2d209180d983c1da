"""
Tests for StateProxy: dirty tracking, computed caching, action wrapping and
persistence.
"""

from typing import Annotated

import pytest

from livestate import NotFoundError, Observable, PersistError, State, computed, state
from livestate.core import StateChanged, StateProxy, StateSchema

from conftest import CounterState


@pytest.fixture
def saved():
    return []


@pytest.fixture
def proxy(saved):
    def saver(name, data):
        saved.append((name, data))
    return StateProxy("counter", CounterState(), StateSchema.from_class(CounterState), saver=saver)


class TestProxyWrites:
    def test_observable_write_marks_dirty(self, proxy):
        assert not proxy.dirty
        proxy.count = 3
        assert proxy.dirty
        assert proxy.target.count == 3

    def test_scratch_write_does_not_mark_dirty(self, proxy, saved):
        proxy.clicks = 10
        assert not proxy.dirty
        assert proxy.persist() is False
        assert saved == []

    def test_persist_only_when_dirty(self, proxy, saved):
        proxy.count = 5
        assert proxy.persist() is True
        assert saved == [("counter", {"count": 5, "doubled": 10})]
        assert not proxy.dirty
        assert proxy.persist() is False
        assert len(saved) == 1

    def test_observable_write_emits_change(self, bus):
        changes = []
        bus.subscribe(changes.append, StateChanged)
        proxy = StateProxy("counter", CounterState(), StateSchema.from_class(CounterState), bus=bus, session_id="s1")

        proxy.count = 2
        proxy.clicks = 1

        assert changes == [StateChanged(state="counter", field="count", old_value=0, new_value=2, session_id="s1")]

    def test_undeclared_attribute_write_fails(self, proxy):
        with pytest.raises(ValueError):
            proxy.nonexistent = 1

    def test_unknown_read_is_none(self, proxy):
        assert proxy.nonexistent is None


class TestComputed:
    def test_cached_until_write(self):
        calls = []

        @state
        class TrackedState(State):
            count: Annotated[int, Observable()] = 1

            @computed
            def doubled(self) -> int:
                calls.append(self.count)
                return self.count * 2

        proxy = StateProxy("tracked", TrackedState(), StateSchema.from_class(TrackedState))
        assert proxy.doubled == 2
        assert proxy.doubled == 2
        assert calls == [1]

        proxy.count = 4
        assert proxy.doubled == 8
        assert calls == [1, 4]

    def test_uncached_recomputes(self):
        calls = []

        @state
        class VolatileState(State):
            count: Annotated[int, Observable()] = 1

            @computed(cached=False)
            def doubled(self) -> int:
                calls.append(self.count)
                return self.count * 2

        proxy = StateProxy("volatile", VolatileState(), StateSchema.from_class(VolatileState))
        proxy.doubled
        proxy.doubled
        assert len(calls) == 2

    def test_snapshot_includes_computed(self, proxy):
        proxy.count = 7
        assert proxy.to_dict() == {"count": 7, "doubled": 14}


class TestActions:
    def test_sync_action_persists(self, proxy, saved):
        assert proxy.increment(by=2) == 2
        assert saved == [("counter", {"count": 2, "doubled": 4})]
        assert not proxy.dirty

    @pytest.mark.asyncio
    async def test_async_action_persists(self, proxy, saved):
        await proxy.recount(target=9)
        assert proxy.count == 9
        assert saved[-1] == ("counter", {"count": 9, "doubled": 18})

    @pytest.mark.asyncio
    async def test_call_action_by_name(self, proxy):
        assert await proxy.call_action("increment", by=3) == 3
        await proxy.call_action("recount", target=1)
        assert proxy.count == 1

    @pytest.mark.asyncio
    async def test_call_unknown_action(self, proxy):
        with pytest.raises(NotFoundError):
            await proxy.call_action("decrement")

    def test_action_cache_invalidation(self, proxy):
        assert proxy.doubled == 0
        proxy.increment()
        assert proxy.doubled == 2

    def test_failing_action_does_not_persist(self, proxy, saved):
        with pytest.raises(RuntimeError, match="quota exceeded"):
            proxy.explode()
        assert saved == []


class TestPersistFailure:
    def test_failure_keeps_dirty(self):
        def saver(name, data):
            raise OSError("disk full")

        proxy = StateProxy("counter", CounterState(), StateSchema.from_class(CounterState), saver=saver)
        proxy.count = 1
        with pytest.raises(PersistError, match="disk full"):
            proxy.persist()
        assert proxy.dirty
        assert proxy.target.count == 1

    def test_no_saver(self):
        proxy = StateProxy("counter", CounterState(), StateSchema.from_class(CounterState))
        proxy.count = 1
        assert proxy.persist() is False
