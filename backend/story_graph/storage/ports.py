from __future__ import annotations

import time
from typing import Any, ContextManager, Protocol, Sequence

from story_graph import errors


class Deadline:
    """Wall-clock budget shared between the async caller and the worker thread."""

    def __init__(self, seconds: float | None) -> None:
        self._expires_at = None if seconds is None else time.monotonic() + seconds
        self._expired = False

    def remaining(self) -> float | None:
        if self._expired:
            return 0.0
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expire(self) -> None:
        self._expired = True

    def check(self) -> None:
        if self._expired or (
            self._expires_at is not None and time.monotonic() >= self._expires_at
        ):
            raise errors.SyncTimeoutError("chapter sync deadline exceeded")


class GraphTransaction(Protocol):
    """Write unit for one chapter sync; nothing is visible until commit."""

    def find_node(self, *, project_id: str, label: str, key: str) -> dict[str, Any] | None: ...

    def find_nodes(
        self, *, project_id: str, label: str, normalized_name: str
    ) -> list[dict[str, Any]]: ...

    def create_node(self, *, label: str, properties: dict[str, Any]) -> dict[str, Any]: ...

    def update_node(self, *, node_id: str, properties: dict[str, Any]) -> dict[str, Any]: ...

    def find_edge(
        self,
        *,
        project_id: str,
        edge_type: str,
        source_id: str,
        target_id: str,
        key: str = "",
    ) -> dict[str, Any] | None: ...

    def create_edge(
        self,
        *,
        edge_type: str,
        source_id: str,
        target_id: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]: ...

    def update_edge(self, *, edge_id: str, properties: dict[str, Any]) -> dict[str, Any]: ...

    def append_state_change(self, *, properties: dict[str, Any]) -> dict[str, Any]: ...

    def clear_project(self, *, project_id: str) -> None: ...


class GraphStorePort(Protocol):
    def transaction(self, *, deadline: Deadline | None = None) -> ContextManager[GraphTransaction]: ...

    def ensure_unique_constraint(self, *, label: str, properties: Sequence[str]) -> None: ...

    def ensure_index(self, *, label: str, property: str) -> None: ...

    def fetch_nodes(
        self, *, project_id: str, labels: Sequence[str] | None = None
    ) -> list[dict[str, Any]]: ...

    def fetch_edges(self, *, project_id: str) -> list[dict[str, Any]]: ...

    def fetch_state_changes(self, *, project_id: str) -> list[dict[str, Any]]: ...

    def delete_project(self, *, project_id: str | None) -> int: ...

    def close(self) -> None: ...
