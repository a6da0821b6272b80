"""Merge one chapter's analysis into the cumulative story graph."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from typing import Any, AsyncIterator, Callable, Iterable
from uuid import uuid4

from story_graph import config, errors
from story_graph.constants import (
    ADVANCES,
    AFFECTS,
    APPEARS_IN,
    AT,
    CHAPTER,
    CHARACTER,
    CONTAINED_IN,
    EVENT,
    INVOLVES,
    LOCATION,
    OBJECT,
    OWNS,
    PLOT_STATUS_RANK,
    PLOT_THREAD,
    RELATES_EVENT,
    RELATES_TO,
    RELATIONSHIP_ENTITY_TYPE,
    TEMPORAL_MARKER,
)
from story_graph.models import (
    ChapterAnalysis,
    EventMention,
    PlotThreadMention,
    RelationshipMention,
    StateChangeMention,
    SyncResult,
    TemporalMarkerMention,
    parse_analysis,
)
from story_graph.services.entity_resolver import EntityResolver, event_key, normalize_name
from story_graph.storage.ports import Deadline, GraphStorePort, GraphTransaction

logger = logging.getLogger(__name__)

SyncedCallback = Callable[[str], None]

_EMPTY = (None, "", [], {})


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _changed_fields(stored: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Non-empty incoming values that differ from what is stored."""
    return {
        key: value
        for key, value in incoming.items()
        if value not in _EMPTY and stored.get(key) != value
    }


def _derive_timeline(analysis: ChapterAnalysis) -> str:
    if analysis.context is not None and analysis.context.current_timeline:
        return analysis.context.current_timeline
    marker_types = {marker.type for marker in analysis.temporal_markers}
    if "flashback" in marker_types:
        return "past"
    if "flashforward" in marker_types:
        return "future"
    return "present"


class _ChapterMerge:
    """One chapter's merge inside an open transaction."""

    def __init__(
        self,
        tx: GraphTransaction,
        analysis: ChapterAnalysis,
        resolver: EntityResolver,
        *,
        synced_at: str,
    ) -> None:
        self._tx = tx
        self._analysis = analysis
        self._resolver = resolver
        self._synced_at = synced_at
        self.project_id = analysis.project_id
        self.chapter = analysis.chapter_number
        self._chapter_node: dict[str, Any] = {}
        # Analyzer-supplied ids of this chapter's mentions, for explicit state changes.
        self._refs: dict[str, dict[str, Any]] = {}
        self._merged: dict[tuple[str, str], dict[str, Any]] = {}
        self.counts: dict[str, int] = {
            "nodes_created": 0,
            "nodes_updated": 0,
            "stubs_created": 0,
            "edges_created": 0,
            "edges_updated": 0,
            "state_changes": 0,
        }

    def run(self) -> dict[str, int]:
        analysis = self._analysis
        self._upsert_chapter()
        for mention in analysis.characters:
            self._merge_entity(
                CHARACTER,
                mention.name,
                mention.id,
                {
                    "role": mention.role,
                    "description": mention.description,
                    "traits": list(mention.traits),
                    "motivations": list(mention.motivations),
                    "aliases": list(mention.aliases),
                },
            )
        for mention in analysis.locations:
            self._merge_entity(
                LOCATION,
                mention.name,
                mention.id,
                {"type": mention.type, "description": mention.description},
            )
        for mention in analysis.objects:
            self._merge_entity(
                OBJECT,
                mention.name,
                mention.id,
                {
                    "type": mention.type,
                    "description": mention.description,
                    "significance": mention.significance,
                },
            )
        for mention in analysis.plot_threads:
            self._merge_plot_thread(mention)
        for index, mention in enumerate(analysis.events):
            self._merge_event(index, mention)
        self._link_structure()
        for mention in analysis.relationships:
            self._merge_relationship(mention)
        for mention in analysis.state_changes:
            self._append_explicit_state_change(mention)
        for mention in analysis.temporal_markers:
            self._merge_temporal_marker(mention)
        return self.counts

    # chapter -----------------------------------------------------------------

    def _upsert_chapter(self) -> None:
        analysis = self._analysis
        context = analysis.context
        props: dict[str, Any] = {
            "number": self.chapter,
            "summary": analysis.summary,
            "timestamp": analysis.timestamp or self._synced_at,
            "synced_at": self._synced_at,
            "chapter_ref": analysis.chapter_id or "",
            "mood": context.mood if context is not None else "neutral",
            "tension": context.tension if context is not None else "low",
            "current_timeline": _derive_timeline(analysis),
        }
        key = str(self.chapter)
        existing = self._tx.find_node(project_id=self.project_id, label=CHAPTER, key=key)
        if existing is None:
            self._chapter_node = self._tx.create_node(
                label=CHAPTER,
                properties={
                    **props,
                    "id": str(uuid4()),
                    "project_id": self.project_id,
                    "key": key,
                    "name": f"Chapter {self.chapter}",
                    "introduced_in": self.chapter,
                    "version": analysis.version,
                },
            )
            self.counts["nodes_created"] += 1
            return
        props["version"] = int(existing.get("version", 0)) + 1
        self._chapter_node = self._tx.update_node(node_id=existing["id"], properties=props)
        self.counts["nodes_updated"] += 1

    # entities ----------------------------------------------------------------

    def _new_node_props(self, name: str, key: str) -> dict[str, Any]:
        return {
            "id": str(uuid4()),
            "project_id": self.project_id,
            "key": key,
            "name": name,
            "normalized_name": normalize_name(name),
            "introduced_in": self.chapter,
        }

    def _merge_entity(
        self,
        label: str,
        name: str,
        external_id: str | None,
        fields: dict[str, Any],
    ) -> dict[str, Any]:
        tx = self._tx
        node = self._resolver.resolve(
            tx, project_id=self.project_id, label=label, name=name, external_id=external_id
        )
        if node is None:
            key = self._resolver.key_for(label=label, name=name, external_id=external_id)
            node = tx.create_node(
                label=label,
                properties={
                    **self._new_node_props(name, key),
                    **{k: v for k, v in fields.items() if v not in _EMPTY},
                    "is_stub": False,
                },
            )
            self.counts["nodes_created"] += 1
        else:
            changes = _changed_fields(node, {"name": name, **fields})
            if node.get("is_stub"):
                changes["is_stub"] = False
            if changes:
                node = tx.update_node(node_id=node["id"], properties=changes)
                self.counts["nodes_updated"] += 1
        if external_id:
            self._refs[external_id] = node
        self._merged[(label, normalize_name(name))] = node
        self._appears_in(node)
        return node

    def _merge_plot_thread(self, mention: PlotThreadMention) -> None:
        existing = self._resolver.resolve(
            self._tx,
            project_id=self.project_id,
            label=PLOT_THREAD,
            name=mention.name,
            external_id=mention.id,
        )
        status = mention.status
        if existing is not None and existing.get("status"):
            stored = existing["status"]
            if PLOT_STATUS_RANK[status] < PLOT_STATUS_RANK.get(stored, 0) and not mention.reopen:
                logger.debug(
                    "ignoring plot status regression %s -> %s for %r",
                    stored,
                    status,
                    mention.name,
                )
                status = stored
        node = self._merge_entity(
            PLOT_THREAD,
            mention.name,
            mention.id,
            {"description": mention.description, "status": status},
        )
        if existing is not None and existing.get("status") and existing["status"] != status:
            self._record_change(
                entity_id=node["id"],
                entity_ref=node["name"],
                entity_type=PLOT_THREAD,
                attribute="status",
                old_value=existing["status"],
                new_value=status,
                reason="plot thread reopened" if mention.reopen else "plot thread progressed",
            )

    def _ensure_entity(self, label: str, name: str) -> dict[str, Any]:
        """Resolve a referenced entity, creating a stub when it is not known yet."""
        cache_key = (label, normalize_name(name))
        node = self._merged.get(cache_key)
        if node is None:
            node = self._resolver.resolve(
                self._tx, project_id=self.project_id, label=label, name=name
            )
        if node is None:
            key = self._resolver.key_for(label=label, name=name)
            node = self._tx.create_node(
                label=label,
                properties={**self._new_node_props(name, key), "is_stub": True},
            )
            self.counts["stubs_created"] += 1
            self._appears_in(node)
        self._merged[cache_key] = node
        return node

    # events and markers ------------------------------------------------------

    def _merge_event(self, index: int, mention: EventMention) -> None:
        tx = self._tx
        key = event_key(self.chapter, mention.name)
        fields = {
            "name": mention.name,
            "description": mention.description,
            "type": mention.type,
            "is_temporal": mention.is_temporal,
            "temporal_type": mention.temporal_type,
            "sequence": index,
        }
        node = tx.find_node(project_id=self.project_id, label=EVENT, key=key)
        if node is None:
            node = tx.create_node(
                label=EVENT,
                properties={
                    **self._new_node_props(mention.name, key),
                    **fields,
                    "chapter": self.chapter,
                },
            )
            self.counts["nodes_created"] += 1
        else:
            changes = {k: v for k, v in fields.items() if node.get(k) != v}
            if changes:
                node = tx.update_node(node_id=node["id"], properties=changes)
                self.counts["nodes_updated"] += 1
        if mention.id:
            self._refs[mention.id] = node
        self._appears_in(node)
        for character in mention.characters:
            self._link(INVOLVES, node, self._ensure_entity(CHARACTER, character))
        if mention.location:
            self._link(AT, node, self._ensure_entity(LOCATION, mention.location))

    def _resolve_event(self, name: str) -> dict[str, Any] | None:
        return self._resolver.resolve_event(
            self._tx, project_id=self.project_id, name=name, chapter=self.chapter
        )

    def _merge_temporal_marker(self, mention: TemporalMarkerMention) -> None:
        tx = self._tx
        key = f"{self.chapter}:{mention.id}"
        fields = {
            "type": mention.type,
            "description": mention.description,
            "from_time": mention.from_time,
            "to_time": mention.to_time,
        }
        node = tx.find_node(project_id=self.project_id, label=TEMPORAL_MARKER, key=key)
        if node is None:
            node = tx.create_node(
                label=TEMPORAL_MARKER,
                properties={
                    "id": str(uuid4()),
                    "project_id": self.project_id,
                    "key": key,
                    "name": mention.description or mention.type,
                    "marker_ref": mention.id,
                    "chapter": self.chapter,
                    "introduced_in": self.chapter,
                    **fields,
                },
            )
            self.counts["nodes_created"] += 1
        else:
            changes = _changed_fields(node, fields)
            if changes:
                node = tx.update_node(node_id=node["id"], properties=changes)
                self.counts["nodes_updated"] += 1
        self._appears_in(node)
        for name in mention.affected_events:
            event = self._resolve_event(name)
            if event is None:
                logger.debug("temporal marker %s names unknown event %r", mention.id, name)
                continue
            self._link(AFFECTS, node, event)

    # edges -------------------------------------------------------------------

    def _appears_in(self, node: dict[str, Any]) -> None:
        self._link(APPEARS_IN, node, self._chapter_node)

    def _link(self, edge_type: str, source: dict[str, Any], target: dict[str, Any]) -> None:
        existing = self._tx.find_edge(
            project_id=self.project_id,
            edge_type=edge_type,
            source_id=source["id"],
            target_id=target["id"],
        )
        if existing is not None:
            return
        self._tx.create_edge(
            edge_type=edge_type,
            source_id=source["id"],
            target_id=target["id"],
            properties={
                "id": str(uuid4()),
                "project_id": self.project_id,
                "key": "",
                "chapter": self.chapter,
            },
        )
        self.counts["edges_created"] += 1

    def _link_structure(self) -> None:
        analysis = self._analysis
        for location in analysis.locations:
            if location.contained_in:
                self._link(
                    CONTAINED_IN,
                    self._ensure_entity(LOCATION, location.name),
                    self._ensure_entity(LOCATION, location.contained_in),
                )
        for item in analysis.objects:
            if item.owner:
                self._assign_owner(item.name, item.owner)
        for thread in analysis.plot_threads:
            plot = self._ensure_entity(PLOT_THREAD, thread.name)
            for character in thread.related_characters:
                self._link(ADVANCES, self._ensure_entity(CHARACTER, character), plot)
            for name in thread.related_events:
                event = self._resolve_event(name)
                if event is None:
                    logger.debug("plot thread %r names unknown event %r", thread.name, name)
                    continue
                self._link(RELATES_EVENT, plot, event)

    def _assign_owner(self, object_name: str, owner_name: str) -> None:
        item = self._ensure_entity(OBJECT, object_name)
        owner = self._ensure_entity(CHARACTER, owner_name)
        previous = item.get("owner")
        if item.get("owner_id") != owner["id"]:
            item = self._tx.update_node(
                node_id=item["id"],
                properties={"owner": owner["name"], "owner_id": owner["id"]},
            )
            self._merged[(OBJECT, normalize_name(object_name))] = item
            if previous:
                self._record_change(
                    entity_id=item["id"],
                    entity_ref=item["name"],
                    entity_type=OBJECT,
                    attribute="owner",
                    old_value=previous,
                    new_value=owner["name"],
                    reason="ownership changed",
                )
        self._link(OWNS, owner, item)

    def _resolve_endpoint(self, label: str, name: str) -> dict[str, Any]:
        if label != EVENT:
            return self._ensure_entity(label, name)
        event = self._resolve_event(name)
        if event is None:
            raise errors.ResolutionError(
                f"relationship references unknown event {name!r} in chapter {self.chapter}"
            )
        return event

    def _merge_relationship(self, mention: RelationshipMention) -> None:
        tx = self._tx
        source = self._resolve_endpoint(mention.source_type, mention.source)
        target = self._resolve_endpoint(mention.target_type, mention.target)
        edge = tx.find_edge(
            project_id=self.project_id,
            edge_type=RELATES_TO,
            source_id=source["id"],
            target_id=target["id"],
            key=mention.type,
        )
        if edge is None:
            tx.create_edge(
                edge_type=RELATES_TO,
                source_id=source["id"],
                target_id=target["id"],
                properties={
                    "id": str(uuid4()),
                    "project_id": self.project_id,
                    "key": mention.type,
                    "relationship_type": mention.type,
                    "description": mention.description,
                    "sentiment": mention.sentiment,
                    "strength": mention.strength,
                    "source_type": mention.source_type,
                    "target_type": mention.target_type,
                    "chapter": self.chapter,
                    "updated_in": self.chapter,
                },
            )
            self.counts["edges_created"] += 1
            return
        incoming = {"sentiment": mention.sentiment, "strength": mention.strength}
        ref = f"{source['name']} -[{mention.type}]-> {target['name']}"
        changes: dict[str, Any] = {}
        for attribute, value in incoming.items():
            if edge.get(attribute) == value:
                continue
            self._record_change(
                entity_id=edge["id"],
                entity_ref=ref,
                entity_type=RELATIONSHIP_ENTITY_TYPE,
                attribute=attribute,
                old_value=edge.get(attribute),
                new_value=value,
                reason=f"relationship updated in chapter {self.chapter}",
            )
            changes[attribute] = value
        if mention.description and mention.description != edge.get("description"):
            changes["description"] = mention.description
        if changes:
            tx.update_edge(edge_id=edge["id"], properties={**changes, "updated_in": self.chapter})
            self.counts["edges_updated"] += 1

    # audit -------------------------------------------------------------------

    def _record_change(
        self,
        *,
        entity_id: str | None,
        entity_ref: str,
        entity_type: str,
        attribute: str,
        old_value: Any,
        new_value: Any,
        reason: str,
        source: str = "merge",
    ) -> None:
        self._tx.append_state_change(
            properties={
                "id": str(uuid4()),
                "project_id": self.project_id,
                "entity_id": entity_id,
                "entity_ref": entity_ref,
                "entity_type": entity_type,
                "attribute": attribute,
                "old_value": old_value,
                "new_value": new_value,
                "reason": reason,
                "chapter": self.chapter,
                "source": source,
                "recorded_at": self._synced_at,
            }
        )
        self.counts["state_changes"] += 1

    def _append_explicit_state_change(self, mention: StateChangeMention) -> None:
        node = self._refs.get(mention.entity_id)
        self._record_change(
            entity_id=node["id"] if node is not None else None,
            entity_ref=mention.entity_id,
            entity_type=mention.entity_type,
            attribute=mention.attribute,
            old_value=mention.old_value,
            new_value=mention.new_value,
            reason=mention.reason,
            source="analysis",
        )


class _ProjectLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class GraphSynchronizer:
    """Applies chapter analyses to the store, one project at a time.

    Syncs of the same project are serialized by a per-project lock; syncs of
    different projects run in parallel. The merge itself runs in a worker thread
    under a deadline, and the project lock is held until that worker has either
    committed or rolled back, so a timed-out sync never lands later.
    """

    def __init__(
        self,
        store: GraphStorePort,
        *,
        resolver: EntityResolver | None = None,
        timeout: float | None = config.SYNC_TIMEOUT_SECONDS,
        on_synced: SyncedCallback | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver or EntityResolver()
        self._timeout = timeout
        self._on_synced = on_synced
        self._locks: dict[str, _ProjectLock] = {}

    @property
    def tracked_projects(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def project_lock(
        self, project_id: str, *, timeout: float | None = None
    ) -> AsyncIterator[None]:
        """Hold the project's lock; the entry is dropped once nobody holds or awaits it."""
        entry = self._locks.get(project_id)
        if entry is None:
            entry = _ProjectLock()
            self._locks[project_id] = entry
        entry.users += 1
        try:
            if timeout is None:
                await entry.lock.acquire()
            else:
                await asyncio.wait_for(entry.lock.acquire(), timeout=timeout)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(project_id) is entry:
                del self._locks[project_id]

    def _apply(self, analysis: ChapterAnalysis, deadline: Deadline, replace: bool) -> dict[str, int]:
        try:
            with self._store.transaction(deadline=deadline) as tx:
                if replace:
                    tx.clear_project(project_id=analysis.project_id)
                merge = _ChapterMerge(tx, analysis, self._resolver, synced_at=_utc_now())
                return merge.run()
        except errors.StoryGraphError:
            raise
        except Exception as exc:
            raise errors.SyncError(
                f"chapter merge failed: {exc}",
                project_id=analysis.project_id,
                chapter=analysis.chapter_number,
            ) from exc

    async def _run_locked(
        self, analysis: ChapterAnalysis, deadline: Deadline, replace: bool
    ) -> dict[str, int]:
        acquired = False
        try:
            async with self.project_lock(analysis.project_id, timeout=deadline.remaining()):
                acquired = True
                return await self._run_worker(analysis, deadline, replace)
        except asyncio.TimeoutError as exc:
            if acquired:
                raise
            raise errors.SyncTimeoutError(
                "timed out waiting for another sync of this project",
                project_id=analysis.project_id,
                chapter=analysis.chapter_number,
            ) from exc

    async def _run_worker(
        self, analysis: ChapterAnalysis, deadline: Deadline, replace: bool
    ) -> dict[str, int]:
        worker = asyncio.ensure_future(asyncio.to_thread(self._apply, analysis, deadline, replace))
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=deadline.remaining())
        except asyncio.TimeoutError:
            # The worker notices the expired deadline at its next write and rolls back;
            # if it had already committed, the sync stands.
            deadline.expire()
            return await worker
        except asyncio.CancelledError:
            deadline.expire()
            await asyncio.wait([worker])
            if not worker.cancelled() and worker.exception() is not None:
                logger.info(
                    "sync of chapter %d cancelled: %s",
                    analysis.chapter_number,
                    worker.exception(),
                )
            raise

    async def sync_chapter(
        self,
        analysis: ChapterAnalysis | dict[str, Any],
        *,
        replace: bool = False,
        timeout: float | None = None,
    ) -> SyncResult:
        """Merge one chapter into the graph as a single all-or-nothing unit.

        Never raises for graph failures: the outcome is reported in the result so
        the caller keeps its (expensive) analysis either way.
        """
        try:
            parsed = parse_analysis(analysis)
        except errors.ValidationError as exc:
            logger.warning("rejected chapter analysis: %s", exc)
            return SyncResult(success=False, message=str(exc))
        project_id = parsed.project_id
        chapter = parsed.chapter_number
        deadline = Deadline(timeout if timeout is not None else self._timeout)
        try:
            counts = await self._run_locked(parsed, deadline, replace)
        except errors.StoryGraphError as exc:
            logger.warning(
                "sync of chapter %d for project %s rolled back: %s", chapter, project_id, exc
            )
            return SyncResult(
                success=False,
                message=f"{type(exc).__name__}: {exc}",
                project_id=project_id,
                chapter_number=chapter,
            )
        except Exception as exc:
            logger.exception("unexpected failure syncing chapter %d for %s", chapter, project_id)
            return SyncResult(
                success=False,
                message=f"unexpected error: {exc}",
                project_id=project_id,
                chapter_number=chapter,
            )
        logger.info("synced chapter %d for project %s: %s", chapter, project_id, counts)
        if self._on_synced is not None:
            self._on_synced(project_id)
        return SyncResult(
            success=True,
            message=f"Chapter {chapter} synchronized",
            project_id=project_id,
            chapter_number=chapter,
            counts=counts,
        )

    async def sync_many(
        self, analyses: Iterable[ChapterAnalysis | dict[str, Any]]
    ) -> list[SyncResult]:
        """Sync chapters in order, stopping at the first failure."""
        results: list[SyncResult] = []
        for analysis in analyses:
            result = await self.sync_chapter(analysis)
            results.append(result)
            if not result.success:
                break
        return results
