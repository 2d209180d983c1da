from pydantic import BaseModel, ConfigDict


class State(BaseModel):
    """
    Base class for state types.

    ```python
    @state
    class CounterState(State):
        count: Annotated[int, Observable()] = 0

        @computed
        def doubled(self) -> int:
            return self.count * 2

        @action
        def increment(self, by: int = 1):
            self.count += by
    ```
    """
    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        populate_by_name=True,
        extra="ignore",
    )
