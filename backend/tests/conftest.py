import pytest

from story_graph.services.context_cache import ContextCache
from story_graph.services.engine import StoryGraphEngine
from story_graph.services.graph_query import GraphQueryService
from story_graph.services.graph_synchronizer import GraphSynchronizer
from story_graph.storage.memory_store import InMemoryGraphStore


@pytest.fixture()
def store():
    return InMemoryGraphStore()


@pytest.fixture()
def synchronizer(store):
    return GraphSynchronizer(store, timeout=5.0)


@pytest.fixture()
def query(store):
    return GraphQueryService(store)


@pytest.fixture()
def engine(store):
    return StoryGraphEngine(store, cache=ContextCache(ttl_seconds=60.0), sync_timeout=5.0)
