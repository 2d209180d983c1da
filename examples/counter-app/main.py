"""
Counter App - Minimal LiveState Application

A counter kept per session, an inventory shared by every visitor and stored
in SQLite, and Datastar buttons that call their actions. Open two tabs to see
inventory changes pushed over the event stream.

    python examples/counter-app/main.py
"""

from typing import Annotated, List

from fasthtml.common import *

from livestate import (
    LiveStateConfig,
    Observable,
    PersistMode,
    State,
    StateRegistry,
    StateScope,
    action,
    computed,
    configure_app,
    configure_logging,
    datastar_script,
    state,
)


@state
class CounterState(State):
    """Counter kept for the visitor's session."""
    count: Annotated[int, Observable()] = 0
    update_count: Annotated[int, Observable()] = 0

    @computed
    def doubled(self) -> int:
        return self.count * 2

    @action
    def increment(self, amount: int = 1):
        self.count += amount
        self.update_count += 1

    @action
    def decrement(self, amount: int = 1):
        self.count -= amount
        self.update_count += 1

    @action(confirm="Reset the counter?")
    def reset(self):
        self.count = 0
        self.update_count += 1


@state(persist=PersistMode.DATABASE, scope=StateScope.GLOBAL)
class InventoryState(State):
    """Shared by every session; changes are broadcast."""
    items: Annotated[List[str], Observable()] = []

    @action
    def add(self, item: str):
        self.items = [*self.items, item]


config = LiveStateConfig.from_environment()
if not config.storage.database_url:
    config.storage.database_url = "sqlite:///livestate_demo.db"
configure_logging(config.logging)

registry = StateRegistry.from_config(config)
registry.register(CounterState)
registry.register(InventoryState)

app, rt = fast_app(pico=False, hdrs=(datastar_script,))
live = configure_app(app, registry, config=config)


@rt("/")
def index(req):
    ctx = live.context(req)
    ctx.get_state("counter")
    ctx.get_state("inventory")
    nonce = live.sessions.generate_nonce(live.session(req).session_id)

    def post(state_name, action_name, **payload):
        return live.action_url(state_name, action_name, nonce=nonce, **payload)

    return Titled(
        "LiveState Counter",
        Div(
            H2(Span(data_text="$counter.count")),
            P("Doubled: ", Span(data_text="$counter.doubled")),
            P("Updates: ", Span(data_text="$counter.update_count")),
            Button("-1", data_on_click=post("counter", "decrement", amount=1)),
            Button("+1", data_on_click=post("counter", "increment", amount=1)),
            Button("+5", data_on_click=post("counter", "increment", amount=5)),
            Button("Reset", data_on_click=f"confirm('Reset the counter?') && {post('counter', 'reset')}"),
            H3("Inventory"),
            P(Span(data_text="$inventory.items.join(', ')")),
            Input(data_bind="inventory.item", placeholder="Item name"),
            Button("Add", data_on_click=post("inventory", "add")),
            data_signals=live.signals(req),
        ),
        live.hydration(req),
        live.client_config(req),
    )


if __name__ == "__main__":
    serve()
