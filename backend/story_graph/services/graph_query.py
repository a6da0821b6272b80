"""Read side of the story graph: overview, time travel, chapter navigation."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from story_graph import errors
from story_graph.constants import (
    APPEARS_IN,
    CHAPTER,
    CHARACTER,
    DEFAULT_NODE_COLOR,
    DEFAULT_NODE_SIZE,
    GRAPH_LABELS,
    NODE_COLORS,
    NODE_SIZES,
    RELATES_TO,
    REPLAYED_EDGE_ATTRIBUTES,
    REPLAYED_NODE_ATTRIBUTES,
)
from story_graph.models import (
    ChapterGraphView,
    ChapterSummary,
    GraphData,
    GraphEdge,
    GraphNode,
    TimelineEntry,
)
from story_graph.services.entity_resolver import normalize_name
from story_graph.storage.ports import GraphStorePort

logger = logging.getLogger(__name__)

_HIDDEN_NODE_FIELDS = {"label"}
_HIDDEN_EDGE_FIELDS = {"type", "source_id", "target_id"}


def to_graph_node(node: dict[str, Any]) -> GraphNode:
    node_type = node["label"]
    return GraphNode(
        id=node["id"],
        label=str(node.get("name") or node_type),
        type=node_type,
        properties={k: v for k, v in node.items() if k not in _HIDDEN_NODE_FIELDS},
        color=NODE_COLORS.get(node_type, DEFAULT_NODE_COLOR),
        size=NODE_SIZES.get(node_type, DEFAULT_NODE_SIZE),
    )


def to_graph_edge(edge: dict[str, Any]) -> GraphEdge:
    edge_type = edge["type"]
    label = edge.get("relationship_type") if edge_type == RELATES_TO else None
    return GraphEdge(
        id=edge["id"],
        source=edge["source_id"],
        target=edge["target_id"],
        type=edge_type,
        label=label or edge_type,
        properties={k: v for k, v in edge.items() if k not in _HIDDEN_EDGE_FIELDS},
    )


def _history_key(record: dict[str, Any]) -> tuple[int, int]:
    return int(record.get("chapter", 0)), int(record.get("seq", 0))


def _value_as_of(
    current: Any,
    history: list[dict[str, Any]],
    chapter: int,
) -> Any:
    """Value at the end of ``chapter``.

    ``history`` is ordered by (chapter, seq). The last change at or before
    ``chapter`` wins; with none, the value is the one the record had when it
    was created, which is the old value of its first change in ingestion order.
    """
    applied = [record for record in history if int(record["chapter"]) <= chapter]
    if applied:
        return applied[-1].get("new_value")
    if history:
        return min(history, key=lambda record: int(record.get("seq", 0))).get("old_value")
    return current


class GraphQueryService:
    def __init__(self, store: GraphStorePort) -> None:
        self._store = store

    def _graph_nodes(self, project_id: str) -> list[dict[str, Any]]:
        return self._store.fetch_nodes(project_id=project_id, labels=GRAPH_LABELS)

    def _chapters(self, project_id: str) -> list[dict[str, Any]]:
        return self._store.fetch_nodes(project_id=project_id, labels=[CHAPTER])

    @staticmethod
    def _find_chapter(chapters: list[dict[str, Any]], number: int) -> dict[str, Any] | None:
        matches = [node for node in chapters if int(node["number"]) == number]
        if not matches:
            return None
        return max(matches, key=lambda node: int(node.get("version", 0)))

    @staticmethod
    def _build(nodes: list[dict[str, Any]], edges: Iterable[dict[str, Any]]) -> GraphData:
        visible = {node["id"] for node in nodes}
        return GraphData.build(
            [to_graph_node(node) for node in nodes],
            [
                to_graph_edge(edge)
                for edge in edges
                if edge["source_id"] in visible and edge["target_id"] in visible
            ],
        )

    def get_overview(self, project_id: str) -> GraphData:
        """Every node and edge of one project. StateChange records are not graph nodes."""
        if not project_id:
            raise errors.ValidationError("project_id is required for graph queries")
        return self._build(
            self._graph_nodes(project_id), self._store.fetch_edges(project_id=project_id)
        )

    def _history(self, project_id: str) -> dict[tuple[str, str], list[dict[str, Any]]]:
        history: dict[tuple[str, str], list[dict[str, Any]]] = {}
        records = sorted(self._store.fetch_state_changes(project_id=project_id), key=_history_key)
        for record in records:
            # Analyzer-reported changes are audit entries and never set the attribute.
            if record.get("entity_id") is None or record.get("source") == "analysis":
                continue
            history.setdefault((record["entity_id"], record["attribute"]), []).append(record)
        return history

    def get_as_of_chapter(self, project_id: str, chapter: int) -> GraphData:
        """The graph as it stood right after ``chapter`` was synchronized.

        Nodes introduced later are hidden, edges need both endpoints visible and
        a creating chapter no later than ``chapter``, and status, sentiment and
        strength are rolled back through the audit log. An unknown chapter
        yields an empty graph.
        """
        if not project_id:
            raise errors.ValidationError("project_id is required for graph queries")
        if self._find_chapter(self._chapters(project_id), chapter) is None:
            logger.debug("as-of query for missing chapter %d in %s", chapter, project_id)
            return GraphData.empty()
        history = self._history(project_id)
        nodes = []
        for node in self._graph_nodes(project_id):
            if int(node.get("introduced_in", 0)) > chapter:
                continue
            for attribute in REPLAYED_NODE_ATTRIBUTES:
                if attribute in node:
                    node[attribute] = _value_as_of(
                        node[attribute], history.get((node["id"], attribute), []), chapter
                    )
            nodes.append(node)
        edges = []
        for edge in self._store.fetch_edges(project_id=project_id):
            if int(edge.get("chapter", 0)) > chapter:
                continue
            if edge["type"] == RELATES_TO:
                for attribute in REPLAYED_EDGE_ATTRIBUTES:
                    edge[attribute] = _value_as_of(
                        edge.get(attribute), history.get((edge["id"], attribute), []), chapter
                    )
            edges.append(edge)
        return self._build(nodes, edges)

    def list_chapters(self, project_id: str) -> list[ChapterSummary]:
        latest: dict[int, dict[str, Any]] = {}
        for node in self._chapters(project_id):
            number = int(node["number"])
            kept = latest.get(number)
            if kept is None or int(node.get("version", 0)) > int(kept.get("version", 0)):
                latest[number] = node
        return [
            ChapterSummary(
                id=node["id"],
                number=number,
                summary=node.get("summary", ""),
                version=int(node.get("version", 1)),
            )
            for number, node in sorted(latest.items())
        ]

    def get_chapter_graph(self, project_id: str, chapter: int) -> ChapterGraphView:
        """The chapter node with everything that appears in it, plus navigation."""
        chapters = self.list_chapters(project_id)
        chapter_node = self._find_chapter(self._chapters(project_id), chapter)
        if chapter_node is None:
            return ChapterGraphView(chapter_number=chapter, data=GraphData.empty(), chapters=chapters)
        edges = [
            edge
            for edge in self._store.fetch_edges(project_id=project_id)
            if int(edge.get("chapter", 0)) <= chapter
        ]
        members = {chapter_node["id"]}
        members.update(
            edge["source_id"]
            for edge in edges
            if edge["type"] == APPEARS_IN and edge["target_id"] == chapter_node["id"]
        )
        nodes = [node for node in self._graph_nodes(project_id) if node["id"] in members]
        return ChapterGraphView(
            chapter_number=chapter,
            data=self._build(nodes, edges),
            chapters=chapters,
        )

    def get_entity_timeline(
        self, project_id: str, name: str, label: str = CHARACTER
    ) -> list[TimelineEntry]:
        normalized = normalize_name(name)
        matches = [
            node
            for node in self._store.fetch_nodes(project_id=project_id, labels=[label])
            if node.get("normalized_name") == normalized
        ]
        if not matches:
            raise errors.NotFoundError(f"{label} {name!r} not found in project {project_id}")
        ids = {node["id"] for node in matches}
        chapter_numbers = {node["id"]: int(node["number"]) for node in self._chapters(project_id)}
        appearances = sorted(
            {
                chapter_numbers[edge["target_id"]]
                for edge in self._store.fetch_edges(project_id=project_id)
                if edge["type"] == APPEARS_IN
                and edge["source_id"] in ids
                and edge["target_id"] in chapter_numbers
            }
        )
        entries = [TimelineEntry(chapter=number, kind="appearance") for number in appearances]
        changes = sorted(
            (
                record
                for record in self._store.fetch_state_changes(project_id=project_id)
                if record.get("entity_id") in ids
            ),
            key=_history_key,
        )
        entries.extend(
            TimelineEntry(
                chapter=int(record["chapter"]),
                kind="state_change",
                attribute=record["attribute"],
                old_value=record.get("old_value"),
                new_value=record.get("new_value"),
                reason=record.get("reason"),
            )
            for record in changes
        )
        # Stable sort keeps appearances ahead of the same chapter's changes.
        return sorted(entries, key=lambda entry: entry.chapter)

    def clear(self, project_id: str | None = None) -> int:
        removed = self._store.delete_project(project_id=project_id)
        if project_id is None:
            logger.warning("cleared the entire story graph store (%d records)", removed)
        else:
            logger.info("cleared project %s (%d records)", project_id, removed)
        return removed
