"""FastAPI entry point exposing the story graph engine."""

from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
import json
import logging
from typing import Any, List

from fastapi import Body, Depends, FastAPI, HTTPException, Path, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from story_graph import config, errors
from story_graph.constants import CHARACTER, GRAPH_LABELS
from story_graph.models import (
    ChapterGraphView,
    ChapterSummary,
    DemoPayload,
    DemoResult,
    GraphData,
    IngestPayload,
    IngestResult,
    NarrativeContext,
    SyncResult,
    TimelineEntry,
)
from story_graph.services.engine import StoryGraphEngine
from story_graph.services.manuscript_analyzer import ManuscriptAnalyzer

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _engine_singleton() -> StoryGraphEngine:  # pragma: no cover
    """Engine singleton, so the store connection pool is built once."""
    try:
        return StoryGraphEngine.from_config()
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"story graph unavailable: {exc}") from exc


async def get_engine() -> StoryGraphEngine:  # pragma: no cover
    engine = _engine_singleton()
    await engine.start()
    return engine


def get_manuscript_analyzer() -> ManuscriptAnalyzer:  # pragma: no cover
    raise HTTPException(status_code=503, detail="no manuscript analyzer is configured")


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    logging.basicConfig(level=config.LOG_LEVEL)
    yield
    if _engine_singleton.cache_info().currsize:
        await _engine_singleton().stop()
        _engine_singleton.cache_clear()


app = FastAPI(title="Story Graph Engine API", version="0.1.0", lifespan=lifespan)


# Global exception mapping so validation and store failures never surface as bare 500s.

def _normalize_unhandled_exception(exc: Exception) -> tuple[int, str]:
    if isinstance(exc, errors.NotFoundError):
        return 404, str(exc)
    if isinstance(
        exc,
        (ValueError, TypeError, KeyError, ValidationError, errors.ValidationError, json.JSONDecodeError),
    ):
        detail = str(exc) or "invalid request payload"
        return 422, detail
    detail = str(exc) or exc.__class__.__name__
    return 503, f"service unavailable: {detail}"


@app.exception_handler(Exception)
async def _unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    status_code, detail = _normalize_unhandled_exception(exc)
    if status_code >= 500:
        logger.exception("Unhandled exception")
    else:
        logger.warning("request rejected (%d): %s", status_code, detail)
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.exception_handler(errors.StoryGraphError)
async def _story_graph_exception_handler(
    request: Request,
    exc: errors.StoryGraphError,
) -> JSONResponse:
    return await _unhandled_exception_handler(request, exc)


@app.post("/api/v1/story-graph/schema")
async def ensure_schema_endpoint(
    engine: StoryGraphEngine = Depends(get_engine),
) -> dict[str, Any]:
    ensured = await engine.ensure_schema()
    return {"success": True, "ensured": ensured}


@app.post("/api/v1/story-graph/sync", response_model=SyncResult)
async def sync_chapter_endpoint(
    payload: dict[str, Any] = Body(...),
    replace: bool = Query(False),
    timeout: float | None = Query(None, gt=0),
    engine: StoryGraphEngine = Depends(get_engine),
) -> SyncResult:
    return await engine.sync_chapter(payload, replace=replace, timeout=timeout)


@app.post("/api/v1/story-graph/ingest", response_model=IngestResult)
async def ingest_manuscript_endpoint(
    payload: IngestPayload,
    engine: StoryGraphEngine = Depends(get_engine),
    analyzer: ManuscriptAnalyzer = Depends(get_manuscript_analyzer),
) -> IngestResult:
    return await engine.ingest_manuscript(
        project_id=payload.project_id,
        text=payload.text,
        chapter_number=payload.chapter_number,
        analyzer=analyzer,
        store_in_graph=payload.store_in_graph,
    )


@app.post("/api/v1/story-graph/demo", response_model=DemoResult)
async def load_demo_endpoint(
    payload: DemoPayload,
    engine: StoryGraphEngine = Depends(get_engine),
) -> DemoResult:
    return await engine.load_demo(payload.project_id, clear_existing=payload.clear_existing)


@app.delete("/api/v1/story-graph")
async def clear_store_endpoint(
    engine: StoryGraphEngine = Depends(get_engine),
) -> dict[str, int]:
    return {"removed": await engine.clear()}


@app.get("/api/v1/projects/{project_id}/graph", response_model=GraphData)
async def get_overview_endpoint(
    project_id: str = Path(..., min_length=1),
    engine: StoryGraphEngine = Depends(get_engine),
) -> GraphData:
    return await engine.get_overview(project_id)


@app.delete("/api/v1/projects/{project_id}/graph")
async def clear_project_endpoint(
    project_id: str = Path(..., min_length=1),
    engine: StoryGraphEngine = Depends(get_engine),
) -> dict[str, int]:
    return {"removed": await engine.clear(project_id)}


@app.get("/api/v1/projects/{project_id}/graph/as-of/{chapter}", response_model=GraphData)
async def get_as_of_chapter_endpoint(
    project_id: str = Path(..., min_length=1),
    chapter: int = Path(..., ge=1),
    engine: StoryGraphEngine = Depends(get_engine),
) -> GraphData:
    return await engine.get_as_of_chapter(project_id, chapter)


@app.get("/api/v1/projects/{project_id}/chapters", response_model=List[ChapterSummary])
async def list_chapters_endpoint(
    project_id: str = Path(..., min_length=1),
    engine: StoryGraphEngine = Depends(get_engine),
) -> List[ChapterSummary]:
    return await engine.list_chapters(project_id)


@app.get("/api/v1/projects/{project_id}/chapters/{chapter}", response_model=ChapterGraphView)
async def get_chapter_graph_endpoint(
    project_id: str = Path(..., min_length=1),
    chapter: int = Path(..., ge=1),
    engine: StoryGraphEngine = Depends(get_engine),
) -> ChapterGraphView:
    return await engine.get_chapter_graph(project_id, chapter)


@app.get("/api/v1/projects/{project_id}/context", response_model=NarrativeContext)
async def get_current_context_endpoint(
    project_id: str = Path(..., min_length=1),
    engine: StoryGraphEngine = Depends(get_engine),
) -> NarrativeContext:
    return await engine.get_current_context(project_id)


@app.get(
    "/api/v1/projects/{project_id}/entities/{name}/timeline",
    response_model=List[TimelineEntry],
)
async def get_entity_timeline_endpoint(
    project_id: str = Path(..., min_length=1),
    name: str = Path(..., min_length=1),
    label: str = Query(CHARACTER),
    engine: StoryGraphEngine = Depends(get_engine),
) -> List[TimelineEntry]:
    if label not in GRAPH_LABELS:
        raise HTTPException(status_code=422, detail=f"unknown entity label: {label}")
    return await engine.get_entity_timeline(project_id, name, label)
