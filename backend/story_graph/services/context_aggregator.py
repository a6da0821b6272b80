"""Compact "where the story stands now" snapshot, derived from the graph."""

from __future__ import annotations

from typing import Any

from story_graph import config
from story_graph.constants import (
    AT,
    CHAPTER,
    CHARACTER,
    CLOSED_PLOT_STATUSES,
    EVENT,
    INVOLVES,
    LOCATION,
    PLOT_THREAD,
)
from story_graph.models import NarrativeContext
from story_graph.services.context_cache import ContextCache
from story_graph.storage.ports import GraphStorePort


def _event_order(node: dict[str, Any]) -> tuple[int, int]:
    return int(node.get("chapter", 0)), int(node.get("sequence", 0))


class ContextAggregator:
    def __init__(
        self,
        store: GraphStorePort,
        *,
        cache: ContextCache[NarrativeContext] | None = None,
        recent_events_limit: int = config.RECENT_EVENTS_LIMIT,
    ) -> None:
        self._store = store
        self._cache = cache
        self._recent_events_limit = recent_events_limit

    def invalidate(self, project_id: str | None = None) -> None:
        if self._cache is not None:
            self._cache.invalidate(project_id)

    def get_current_context(self, project_id: str) -> NarrativeContext:
        if self._cache is not None:
            cached = self._cache.get(project_id)
            if cached is not None:
                return cached.model_copy(deep=True)
        generation = self._cache.generation() if self._cache is not None else None
        context = self.compute(project_id)
        if self._cache is not None:
            # A sync that commits while this read runs invalidates it; skip caching then.
            self._cache.put(project_id, context, generation=generation)
        return context.model_copy(deep=True)

    def compute(self, project_id: str) -> NarrativeContext:
        """Build the snapshot from current graph state; an empty project gives defaults."""
        nodes = self._store.fetch_nodes(
            project_id=project_id, labels=[CHAPTER, EVENT, CHARACTER, LOCATION, PLOT_THREAD]
        )
        chapters = [node for node in nodes if node["label"] == CHAPTER]
        if not chapters:
            return NarrativeContext()
        latest = max(chapters, key=lambda node: (node.get("synced_at", ""), int(node["number"])))
        by_id = {node["id"]: node for node in nodes}
        events = sorted((node for node in nodes if node["label"] == EVENT), key=_event_order)
        latest_events = [node for node in events if int(node["chapter"]) == int(latest["number"])]

        involves: dict[str, list[str]] = {}
        located_at: dict[str, str] = {}
        for edge in self._store.fetch_edges(project_id=project_id):
            if edge["type"] == INVOLVES:
                involves.setdefault(edge["source_id"], []).append(edge["target_id"])
            elif edge["type"] == AT:
                located_at[edge["source_id"]] = edge["target_id"]

        active: list[str] = []
        for event in latest_events:
            for character_id in involves.get(event["id"], []):
                name = by_id[character_id]["name"] if character_id in by_id else None
                if name and name not in active:
                    active.append(name)

        current_location = None
        for event in reversed(latest_events):
            location_id = located_at.get(event["id"])
            if location_id in by_id:
                current_location = by_id[location_id]["name"]
                break

        plot_threads = sorted(
            (node for node in nodes if node["label"] == PLOT_THREAD),
            key=lambda node: (int(node.get("introduced_in", 0)), node["name"]),
        )
        return NarrativeContext(
            active_characters=active,
            current_location=current_location,
            current_timeline=latest.get("current_timeline") or "present",
            open_plot_threads=[
                node["name"]
                for node in plot_threads
                if node.get("status", "introduced") not in CLOSED_PLOT_STATUSES
            ],
            recent_events=[node["name"] for node in events[-self._recent_events_limit:]],
            mood=latest.get("mood") or "neutral",
            tension=latest.get("tension") or "low",
        )
