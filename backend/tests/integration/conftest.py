import os
import uuid

import pytest


def _get_memgraph_connection_config() -> tuple[str, int]:
    host = os.getenv("MEMGRAPH_HOST")
    raw_port = os.getenv("MEMGRAPH_PORT")
    if not host or not raw_port:
        pytest.skip("MEMGRAPH_HOST and MEMGRAPH_PORT are required for Memgraph tests")
    try:
        port = int(raw_port)
    except ValueError as exc:
        pytest.fail(f"MEMGRAPH_PORT must be an integer: {exc}", pytrace=False)
    return host, port


@pytest.fixture()
def memgraph_store():
    from story_graph.storage.memgraph_store import MemgraphGraphStore

    host, port = _get_memgraph_connection_config()
    store = MemgraphGraphStore(host=host, port=port)
    yield store
    store.close()


@pytest.fixture()
def project_id(memgraph_store):
    project = f"it-{uuid.uuid4().hex[:12]}"
    yield project
    memgraph_store.delete_project(project_id=project)
