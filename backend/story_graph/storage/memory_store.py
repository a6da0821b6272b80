"""In-process graph store: an arena of nodes and edges partitioned per project."""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Sequence

from story_graph import errors
from story_graph.constants import STATE_CHANGE
from story_graph.storage.ports import Deadline


@dataclass
class _Partition:
    nodes: dict[str, dict[str, Any]] = field(default_factory=dict)
    node_keys: dict[tuple[str, str], str] = field(default_factory=dict)
    edges: dict[str, dict[str, Any]] = field(default_factory=dict)
    edge_keys: dict[tuple[str, str, str, str], str] = field(default_factory=dict)
    state_changes: list[dict[str, Any]] = field(default_factory=list)


class _MemoryTransaction:
    def __init__(self, partitions: dict[str, _Partition], deadline: Deadline | None) -> None:
        self._committed = partitions
        self._staged: dict[str, _Partition] = {}
        self._deadline = deadline

    def _check(self) -> None:
        if self._deadline is not None:
            self._deadline.check()

    def _partition(self, project_id: str) -> _Partition:
        staged = self._staged.get(project_id)
        if staged is None:
            base = self._committed.get(project_id)
            staged = copy.deepcopy(base) if base is not None else _Partition()
            self._staged[project_id] = staged
        return staged

    def _node_partition(self, node_id: str) -> _Partition:
        for partition in self._staged.values():
            if node_id in partition.nodes:
                return partition
        raise errors.SyncError(f"node not found in transaction: {node_id}")

    def _edge_partition(self, edge_id: str) -> _Partition:
        for partition in self._staged.values():
            if edge_id in partition.edges:
                return partition
        raise errors.SyncError(f"edge not found in transaction: {edge_id}")

    def find_node(self, *, project_id: str, label: str, key: str) -> dict[str, Any] | None:
        self._check()
        partition = self._partition(project_id)
        node_id = partition.node_keys.get((label, key))
        if node_id is None:
            return None
        return dict(partition.nodes[node_id])

    def find_nodes(
        self, *, project_id: str, label: str, normalized_name: str
    ) -> list[dict[str, Any]]:
        self._check()
        partition = self._partition(project_id)
        return [
            dict(node)
            for node in partition.nodes.values()
            if node["label"] == label and node.get("normalized_name") == normalized_name
        ]

    def create_node(self, *, label: str, properties: dict[str, Any]) -> dict[str, Any]:
        self._check()
        partition = self._partition(properties["project_id"])
        identity = (label, properties["key"])
        if identity in partition.node_keys:
            raise errors.SyncError(
                f"unique constraint violated for {label} key={properties['key']!r}"
            )
        node = {**properties, "label": label}
        partition.nodes[node["id"]] = node
        partition.node_keys[identity] = node["id"]
        return dict(node)

    def update_node(self, *, node_id: str, properties: dict[str, Any]) -> dict[str, Any]:
        self._check()
        partition = self._node_partition(node_id)
        node = {**partition.nodes[node_id], **properties}
        partition.nodes[node_id] = node
        return dict(node)

    def find_edge(
        self,
        *,
        project_id: str,
        edge_type: str,
        source_id: str,
        target_id: str,
        key: str = "",
    ) -> dict[str, Any] | None:
        self._check()
        partition = self._partition(project_id)
        edge_id = partition.edge_keys.get((edge_type, source_id, target_id, key))
        if edge_id is None:
            return None
        return dict(partition.edges[edge_id])

    def create_edge(
        self,
        *,
        edge_type: str,
        source_id: str,
        target_id: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        self._check()
        partition = self._partition(properties["project_id"])
        if source_id not in partition.nodes or target_id not in partition.nodes:
            raise errors.SyncError(
                f"{edge_type} endpoints must exist in project {properties['project_id']}"
            )
        identity = (edge_type, source_id, target_id, properties.get("key", ""))
        if identity in partition.edge_keys:
            raise errors.SyncError(f"duplicate {edge_type} edge {source_id}->{target_id}")
        edge = {
            **properties,
            "type": edge_type,
            "source_id": source_id,
            "target_id": target_id,
        }
        partition.edges[edge["id"]] = edge
        partition.edge_keys[identity] = edge["id"]
        return dict(edge)

    def update_edge(self, *, edge_id: str, properties: dict[str, Any]) -> dict[str, Any]:
        self._check()
        partition = self._edge_partition(edge_id)
        edge = {**partition.edges[edge_id], **properties}
        partition.edges[edge_id] = edge
        return dict(edge)

    def append_state_change(self, *, properties: dict[str, Any]) -> dict[str, Any]:
        self._check()
        partition = self._partition(properties["project_id"])
        record = {**properties, "label": STATE_CHANGE, "seq": len(partition.state_changes) + 1}
        partition.state_changes.append(record)
        return dict(record)

    def clear_project(self, *, project_id: str) -> None:
        self._check()
        self._staged[project_id] = _Partition()

    def staged(self) -> dict[str, _Partition]:
        return self._staged


class InMemoryGraphStore:
    """Arena store used for tests, demos and single-process deployments.

    Each transaction stages deep copies of the partitions it touches and swaps
    them in on commit, so partial writes are never observed and projects commit
    independently of each other.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._partitions: dict[str, _Partition] = {}
        self._constraints: set[tuple[str, tuple[str, ...]]] = set()
        self._indexes: set[tuple[str, str]] = set()

    @contextmanager
    def transaction(self, *, deadline: Deadline | None = None) -> Iterator[_MemoryTransaction]:
        with self._lock:
            snapshot = dict(self._partitions)
        tx = _MemoryTransaction(snapshot, deadline)
        yield tx
        if deadline is not None:
            deadline.check()
        with self._lock:
            self._partitions.update(tx.staged())

    def ensure_unique_constraint(self, *, label: str, properties: Sequence[str]) -> None:
        with self._lock:
            self._constraints.add((label, tuple(properties)))

    def ensure_index(self, *, label: str, property: str) -> None:
        with self._lock:
            self._indexes.add((label, property))

    @property
    def constraints(self) -> set[tuple[str, tuple[str, ...]]]:
        return set(self._constraints)

    @property
    def indexes(self) -> set[tuple[str, str]]:
        return set(self._indexes)

    def _partition(self, project_id: str) -> _Partition | None:
        with self._lock:
            return self._partitions.get(project_id)

    def fetch_nodes(
        self, *, project_id: str, labels: Sequence[str] | None = None
    ) -> list[dict[str, Any]]:
        partition = self._partition(project_id)
        if partition is None:
            return []
        return [
            copy.deepcopy(node)
            for node in partition.nodes.values()
            if labels is None or node["label"] in labels
        ]

    def fetch_edges(self, *, project_id: str) -> list[dict[str, Any]]:
        partition = self._partition(project_id)
        if partition is None:
            return []
        return [copy.deepcopy(edge) for edge in partition.edges.values()]

    def fetch_state_changes(self, *, project_id: str) -> list[dict[str, Any]]:
        partition = self._partition(project_id)
        if partition is None:
            return []
        return [copy.deepcopy(record) for record in partition.state_changes]

    def delete_project(self, *, project_id: str | None) -> int:
        with self._lock:
            if project_id is None:
                removed = sum(_size(p) for p in self._partitions.values())
                self._partitions.clear()
                return removed
            partition = self._partitions.pop(project_id, None)
            return 0 if partition is None else _size(partition)

    def close(self) -> None:
        return None


def _size(partition: _Partition) -> int:
    return len(partition.nodes) + len(partition.edges) + len(partition.state_changes)
