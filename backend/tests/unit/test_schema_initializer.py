import pytest

from story_graph import errors
from story_graph.constants import CHAPTER, CHARACTER
from story_graph.services.schema_initializer import SchemaInitializer, backoff_delay
from story_graph.storage.memory_store import InMemoryGraphStore
from story_graph.storage.schema import INDEX_DEFINITIONS, UNIQUE_CONSTRAINTS


class FlakyStore(InMemoryGraphStore):
    """Unreachable for the first ``failures`` schema calls."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.calls = 0

    def ensure_unique_constraint(self, *, label, properties):
        self.calls += 1
        if self.calls <= self.failures:
            raise errors.ConnectivityError("connection refused")
        super().ensure_unique_constraint(label=label, properties=properties)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.parametrize(
    "attempt, expected",
    [(1, 0.5), (2, 1.0), (3, 2.0), (5, 8.0), (9, 8.0)],
)
def test_backoff_delay_doubles_until_cap(attempt, expected):
    assert backoff_delay(attempt, base=0.5, maximum=8.0) == expected


@pytest.mark.asyncio
async def test_ensure_schema_creates_constraints_and_indexes(store):
    initializer = SchemaInitializer(store, sleep=RecordingSleep())

    ensured = await initializer.ensure_schema()

    assert ensured == len(UNIQUE_CONSTRAINTS) + len(INDEX_DEFINITIONS)
    assert (CHARACTER, ("project_id", "key")) in store.constraints
    assert (CHAPTER, "number") in store.indexes


@pytest.mark.asyncio
async def test_ensure_schema_is_idempotent(store):
    initializer = SchemaInitializer(store, sleep=RecordingSleep())

    await initializer.ensure_schema()
    constraints, indexes = store.constraints, store.indexes
    await initializer.ensure_schema()

    assert store.constraints == constraints
    assert store.indexes == indexes
    assert store.fetch_nodes(project_id="any") == []


@pytest.mark.asyncio
async def test_ensure_schema_retries_with_backoff():
    store = FlakyStore(failures=2)
    sleep = RecordingSleep()
    initializer = SchemaInitializer(store, attempts=4, base_delay=0.1, max_delay=1.0, sleep=sleep)

    await initializer.ensure_schema()

    assert sleep.delays == [0.1, 0.2]
    assert store.constraints


@pytest.mark.asyncio
async def test_ensure_schema_gives_up_after_attempts():
    store = FlakyStore(failures=10)
    sleep = RecordingSleep()
    initializer = SchemaInitializer(store, attempts=3, base_delay=0.1, max_delay=0.15, sleep=sleep)

    with pytest.raises(errors.ConnectivityError):
        await initializer.ensure_schema()

    assert sleep.delays == [0.1, 0.15]
    assert store.calls == 3
