"""Facade wiring the store, synchronizer, query service and context aggregator."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from story_graph import config, errors
from story_graph.constants import CHARACTER, MIN_MANUSCRIPT_LENGTH
from story_graph.demo import build_demo_chapters
from story_graph.models import (
    ChapterAnalysis,
    ChapterGraphView,
    ChapterSummary,
    DemoResult,
    GraphData,
    IngestResult,
    NarrativeContext,
    SyncResult,
    TimelineEntry,
    parse_analysis,
)
from story_graph.services.context_aggregator import ContextAggregator
from story_graph.services.context_cache import ContextCache
from story_graph.services.entity_resolver import EntityResolver
from story_graph.services.graph_query import GraphQueryService
from story_graph.services.graph_synchronizer import GraphSynchronizer
from story_graph.services.manuscript_analyzer import ManuscriptAnalyzer
from story_graph.services.schema_initializer import SchemaInitializer
from story_graph.storage.ports import GraphStorePort

logger = logging.getLogger(__name__)


def build_store(backend: str | None = None) -> GraphStorePort:
    selected = backend or config.STORY_GRAPH_BACKEND
    if selected == "memory":
        from story_graph.storage.memory_store import InMemoryGraphStore

        return InMemoryGraphStore()
    if selected == "memgraph":
        from story_graph.storage.memgraph_store import MemgraphGraphStore

        return MemgraphGraphStore()
    raise ValueError(f"unknown story graph backend: {selected}")


class StoryGraphEngine:
    def __init__(
        self,
        store: GraphStorePort,
        *,
        resolver: EntityResolver | None = None,
        cache: ContextCache[NarrativeContext] | None = None,
        schema_initializer: SchemaInitializer | None = None,
        sync_timeout: float | None = config.SYNC_TIMEOUT_SECONDS,
    ) -> None:
        self.store = store
        self.cache = cache if cache is not None else ContextCache()
        self.schema = schema_initializer or SchemaInitializer(store)
        self.query = GraphQueryService(store)
        self.context = ContextAggregator(store, cache=self.cache)
        self.synchronizer = GraphSynchronizer(
            store,
            resolver=resolver,
            timeout=sync_timeout,
            on_synced=self.context.invalidate,
        )

    @classmethod
    def from_config(cls) -> "StoryGraphEngine":
        return cls(build_store())

    async def start(self) -> None:
        self.cache.start()

    async def stop(self) -> None:
        await self.cache.stop()
        await asyncio.to_thread(self.store.close)

    async def ensure_schema(self) -> int:
        return await self.schema.ensure_schema()

    async def sync_chapter(
        self,
        analysis: ChapterAnalysis | dict[str, Any],
        *,
        replace: bool = False,
        timeout: float | None = None,
    ) -> SyncResult:
        return await self.synchronizer.sync_chapter(analysis, replace=replace, timeout=timeout)

    async def get_overview(self, project_id: str) -> GraphData:
        return await asyncio.to_thread(self.query.get_overview, project_id)

    async def get_as_of_chapter(self, project_id: str, chapter: int) -> GraphData:
        return await asyncio.to_thread(self.query.get_as_of_chapter, project_id, chapter)

    async def list_chapters(self, project_id: str) -> list[ChapterSummary]:
        return await asyncio.to_thread(self.query.list_chapters, project_id)

    async def get_chapter_graph(self, project_id: str, chapter: int) -> ChapterGraphView:
        return await asyncio.to_thread(self.query.get_chapter_graph, project_id, chapter)

    async def get_entity_timeline(
        self, project_id: str, name: str, label: str = CHARACTER
    ) -> list[TimelineEntry]:
        return await asyncio.to_thread(self.query.get_entity_timeline, project_id, name, label)

    async def get_current_context(self, project_id: str) -> NarrativeContext:
        return await asyncio.to_thread(self.context.get_current_context, project_id)

    async def clear(self, project_id: str | None = None) -> int:
        """Delete one project's graph, or the whole store when no project is given."""
        if project_id is None:
            removed = await asyncio.to_thread(self.query.clear, None)
        else:
            async with self.synchronizer.project_lock(project_id):
                removed = await asyncio.to_thread(self.query.clear, project_id)
        self.context.invalidate(project_id)
        return removed

    async def ingest_manuscript(
        self,
        *,
        project_id: str,
        text: str,
        chapter_number: int,
        analyzer: ManuscriptAnalyzer,
        store_in_graph: bool = True,
    ) -> IngestResult:
        """Analyze raw chapter text and merge the result into the graph.

        The analysis is returned even when the graph write fails; the failure is
        reported in ``graph_update``.
        """
        if len(text.strip()) < MIN_MANUSCRIPT_LENGTH:
            raise errors.ValidationError(
                f"manuscript text must be at least {MIN_MANUSCRIPT_LENGTH} characters long"
            )
        context = await self.get_current_context(project_id)
        logger.info("analyzing chapter %d for project %s", chapter_number, project_id)
        raw = await analyzer.analyze(
            project_id=project_id,
            text=text,
            chapter_number=chapter_number,
            context=context,
        )
        payload = raw.model_dump(by_alias=True) if isinstance(raw, ChapterAnalysis) else dict(raw)
        payload.update({"projectId": project_id, "chapterNumber": chapter_number})
        payload.pop("project_id", None)
        payload.pop("chapter_number", None)
        analysis = parse_analysis(payload)
        if not store_in_graph:
            return IngestResult(analysis=analysis)
        try:
            await self.ensure_schema()
        except errors.ConnectivityError as exc:
            logger.warning("graph store unavailable, analysis not stored: %s", exc)
            return IngestResult(
                analysis=analysis,
                graph_update=SyncResult(
                    success=False,
                    message=f"ConnectivityError: {exc}",
                    project_id=project_id,
                    chapter_number=chapter_number,
                ),
            )
        graph_update = await self.sync_chapter(analysis)
        return IngestResult(analysis=analysis, graph_update=graph_update)

    async def load_demo(self, project_id: str, *, clear_existing: bool = False) -> DemoResult:
        await self.ensure_schema()
        if clear_existing:
            await self.clear(project_id)
        results = await self.synchronizer.sync_many(build_demo_chapters(project_id))
        created = sum(1 for result in results if result.success)
        logger.info("loaded demo story into %s (%d chapters)", project_id, created)
        return DemoResult(project_id=project_id, chapters_created=created, results=results)
