"""Resolve analyzer mentions to the graph nodes they denote."""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from story_graph import errors
from story_graph.constants import EVENT, MERGEABLE_LABELS
from story_graph.storage.ports import GraphTransaction


def normalize_name(name: str) -> str:
    """Case-fold and collapse whitespace; the default identity of a named entity."""
    return " ".join(name.split()).casefold()


class ResolutionStrategy(Protocol):
    def identity_key(self, *, label: str, name: str, external_id: str | None = None) -> str: ...


class NormalizedNameStrategy:
    """Entities with the same normalized name are the same entity."""

    def identity_key(self, *, label: str, name: str, external_id: str | None = None) -> str:
        return normalize_name(name)


class StableIdStrategy:
    """Prefer a canonical id supplied by the analyzer over the entity's name.

    ``canonical_ids`` maps analyzer ids (or aliases) onto a canonical id so that
    differently named mentions of one entity collapse into a single node.
    """

    def __init__(self, canonical_ids: Mapping[str, str] | None = None) -> None:
        self._canonical_ids = dict(canonical_ids or {})

    def identity_key(self, *, label: str, name: str, external_id: str | None = None) -> str:
        if external_id:
            return f"id:{self._canonical_ids.get(external_id, external_id)}"
        return normalize_name(name)


def event_key(chapter: int, name: str) -> str:
    return f"{chapter}:{normalize_name(name)}"


class EntityResolver:
    def __init__(self, strategy: ResolutionStrategy | None = None) -> None:
        self._strategy = strategy or NormalizedNameStrategy()

    def key_for(self, *, label: str, name: str, external_id: str | None = None) -> str:
        if label not in MERGEABLE_LABELS:
            raise ValueError(f"{label} is not resolved by identity key")
        return self._strategy.identity_key(label=label, name=name, external_id=external_id)

    def resolve(
        self,
        tx: GraphTransaction,
        *,
        project_id: str,
        label: str,
        name: str,
        external_id: str | None = None,
    ) -> dict[str, Any] | None:
        key = self.key_for(label=label, name=name, external_id=external_id)
        node = tx.find_node(project_id=project_id, label=label, key=key)
        if node is not None:
            return node
        normalized = normalize_name(name)
        if external_id is not None:
            if key == normalized:
                return None
            # A name-keyed stub may predate the analyzer supplying an id for it.
            return tx.find_node(project_id=project_id, label=label, key=normalized)
        candidates = tx.find_nodes(project_id=project_id, label=label, normalized_name=normalized)
        if len(candidates) > 1:
            raise errors.ResolutionError(
                f"{label} {name!r} is ambiguous in project {project_id}: "
                f"{len(candidates)} entities share that name"
            )
        return candidates[0] if candidates else None

    def resolve_event(
        self,
        tx: GraphTransaction,
        *,
        project_id: str,
        name: str,
        chapter: int,
    ) -> dict[str, Any] | None:
        """Prefer the event of this chapter, else the latest earlier one of that name."""
        current = tx.find_node(project_id=project_id, label=EVENT, key=event_key(chapter, name))
        if current is not None:
            return current
        earlier = [
            node
            for node in tx.find_nodes(
                project_id=project_id, label=EVENT, normalized_name=normalize_name(name)
            )
            if int(node.get("chapter", 0)) < chapter
        ]
        if not earlier:
            return None
        return max(earlier, key=lambda node: (int(node["chapter"]), int(node.get("sequence", 0))))
