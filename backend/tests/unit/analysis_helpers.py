from __future__ import annotations

import contextlib
import time
from typing import Any

from story_graph.storage.memory_store import InMemoryGraphStore


def chapter_payload(project_id: str, number: int, **sections: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "projectId": project_id,
        "chapterNumber": number,
        "summary": f"Chapter {number} summary",
        "characters": [],
        "locations": [],
        "objects": [],
        "events": [],
        "relationships": [],
        "plotThreads": [],
        "temporalMarkers": [],
        "stateChanges": [],
    }
    payload.update(sections)
    return payload


def character(name: str, **fields: Any) -> dict[str, Any]:
    return {"name": name, "role": "supporting", "description": f"{name} description", **fields}


def relationship(
    source: str,
    target: str,
    kind: str = "friends_with",
    *,
    strength: float = 0.5,
    sentiment: str = "positive",
    **fields: Any,
) -> dict[str, Any]:
    return {
        "source": source,
        "sourceType": "Character",
        "target": target,
        "targetType": "Character",
        "type": kind,
        "sentiment": sentiment,
        "strength": strength,
        **fields,
    }


def plot(name: str, status: str, **fields: Any) -> dict[str, Any]:
    return {"name": name, "status": status, "description": f"{name} arc", **fields}


def nodes_of(store: InMemoryGraphStore, project_id: str, label: str) -> list[dict[str, Any]]:
    return store.fetch_nodes(project_id=project_id, labels=[label])


def graph_signature(store: InMemoryGraphStore, project_id: str) -> tuple[set, set]:
    """Node identities and edge identities, independent of generated ids."""
    nodes = store.fetch_nodes(project_id=project_id)
    keys = {node["id"]: (node["label"], node["key"]) for node in nodes}
    edges = {
        (edge["type"], keys[edge["source_id"]], keys[edge["target_id"]], edge.get("key", ""))
        for edge in store.fetch_edges(project_id=project_id)
    }
    return set(keys.values()), edges


class _SlowTransaction:
    def __init__(self, inner: Any, delay: float) -> None:
        self._inner = inner
        self._delay = delay

    def create_node(self, **kwargs: Any) -> dict[str, Any]:
        time.sleep(self._delay)
        return self._inner.create_node(**kwargs)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._inner, name)


class SlowStore(InMemoryGraphStore):
    """Memory store whose node creation takes ``delay`` seconds each."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    @contextlib.contextmanager
    def transaction(self, *, deadline=None):
        with super().transaction(deadline=deadline) as tx:
            yield _SlowTransaction(tx, self.delay)
