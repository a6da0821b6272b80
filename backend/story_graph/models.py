"""Domain models: the analyzer's per-chapter payload and the graph read views."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from story_graph import errors

EndpointType = Literal["Character", "Location", "Object", "Event", "PlotThread"]
Sentiment = Literal["positive", "negative", "neutral", "ambiguous"]
PlotStatus = Literal["introduced", "developing", "climax", "resolved", "abandoned"]
TemporalType = Literal["current", "flashback", "flashforward", "memory"]
MarkerType = Literal["flashback", "flashforward", "timejump", "simultaneous"]
Tension = Literal["low", "medium", "high", "critical"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class _NamedMention(CamelModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def ensure_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be empty")
        return value.strip()


class CharacterMention(_NamedMention):
    role: str = ""
    description: str = ""
    traits: List[str] = Field(default_factory=list)
    motivations: List[str] = Field(default_factory=list)
    aliases: List[str] = Field(default_factory=list)


class LocationMention(_NamedMention):
    type: str = ""
    description: str = ""
    contained_in: Optional[str] = None


class ObjectMention(_NamedMention):
    type: str = ""
    description: str = ""
    significance: str = ""
    owner: Optional[str] = None


class EventMention(_NamedMention):
    description: str = ""
    type: str = "action"
    characters: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    is_temporal: bool = False
    temporal_type: TemporalType = "current"


class RelationshipMention(CamelModel):
    id: Optional[str] = None
    source: str = Field(..., min_length=1)
    source_type: EndpointType = "Character"
    target: str = Field(..., min_length=1)
    target_type: EndpointType = "Character"
    type: str = Field(..., min_length=1)
    description: str = ""
    sentiment: Sentiment = "neutral"
    strength: float = Field(default=0.5, ge=0.0, le=1.0)

    @field_validator("source", "target", "type")
    @classmethod
    def ensure_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("relationship endpoints and type must not be empty")
        return value.strip()


class PlotThreadMention(_NamedMention):
    description: str = ""
    status: PlotStatus = "introduced"
    related_characters: List[str] = Field(default_factory=list)
    related_events: List[str] = Field(default_factory=list)
    reopen: bool = False


class TemporalMarkerMention(CamelModel):
    id: str = Field(..., min_length=1)
    type: MarkerType
    description: str = ""
    from_time: Optional[str] = None
    to_time: Optional[str] = None
    affected_events: List[str] = Field(default_factory=list)


class StateChangeMention(CamelModel):
    entity_id: str = Field(..., min_length=1)
    entity_type: str = Field(..., min_length=1)
    attribute: str = Field(..., min_length=1)
    old_value: Any = None
    new_value: Any
    reason: str = ""


class ChapterContext(CamelModel):
    mood: str = "neutral"
    tension: Tension = "low"
    current_timeline: Optional[str] = None


class ChapterAnalysis(CamelModel):
    """Structured analysis of one chapter, as produced by the manuscript analyzer."""

    project_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("projectId", "project_id", "workflowId"),
        serialization_alias="projectId",
    )
    chapter_id: Optional[str] = None
    chapter_number: int = Field(..., ge=1)
    version: int = Field(default=1, ge=1)
    summary: str = ""
    timestamp: Optional[str] = None
    characters: List[CharacterMention] = Field(default_factory=list)
    locations: List[LocationMention] = Field(default_factory=list)
    objects: List[ObjectMention] = Field(default_factory=list)
    events: List[EventMention] = Field(default_factory=list)
    relationships: List[RelationshipMention] = Field(default_factory=list)
    plot_threads: List[PlotThreadMention] = Field(default_factory=list)
    temporal_markers: List[TemporalMarkerMention] = Field(default_factory=list)
    state_changes: List[StateChangeMention] = Field(default_factory=list)
    context: Optional[ChapterContext] = None

    @field_validator("project_id")
    @classmethod
    def ensure_project_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("project_id must not be empty")
        return value.strip()


def parse_analysis(payload: ChapterAnalysis | dict[str, Any]) -> ChapterAnalysis:
    """Validate an inbound analysis, converting pydantic failures to ValidationError."""
    if isinstance(payload, ChapterAnalysis):
        return payload
    if not isinstance(payload, dict):
        raise errors.ValidationError("chapter analysis must be an object")
    try:
        return ChapterAnalysis.model_validate(payload)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise errors.ValidationError(f"invalid chapter analysis: {problems}") from exc


class GraphNode(CamelModel):
    id: str
    label: str
    type: str
    properties: Dict[str, Any] = Field(default_factory=dict)
    color: str
    size: int


class GraphEdge(CamelModel):
    id: str
    source: str
    target: str
    type: str
    label: str
    properties: Dict[str, Any] = Field(default_factory=dict)


class GraphStats(CamelModel):
    total_nodes: int
    total_edges: int
    nodes_by_type: Dict[str, int] = Field(default_factory=dict)


class GraphData(CamelModel):
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)
    stats: GraphStats

    @classmethod
    def build(cls, nodes: List[GraphNode], edges: List[GraphEdge]) -> "GraphData":
        by_type: Dict[str, int] = {}
        for node in nodes:
            by_type[node.type] = by_type.get(node.type, 0) + 1
        return cls(
            nodes=nodes,
            edges=edges,
            stats=GraphStats(
                total_nodes=len(nodes),
                total_edges=len(edges),
                nodes_by_type=by_type,
            ),
        )

    @classmethod
    def empty(cls) -> "GraphData":
        return cls.build([], [])


class ChapterSummary(CamelModel):
    id: str
    number: int
    summary: str = ""
    version: int = 1


class SyncResult(CamelModel):
    success: bool
    message: str
    project_id: Optional[str] = None
    chapter_number: Optional[int] = None
    counts: Dict[str, int] = Field(default_factory=dict)


class NarrativeContext(CamelModel):
    active_characters: List[str] = Field(default_factory=list)
    current_location: Optional[str] = None
    current_timeline: str = "present"
    open_plot_threads: List[str] = Field(default_factory=list)
    recent_events: List[str] = Field(default_factory=list)
    mood: str = "neutral"
    tension: str = "low"


class TimelineEntry(CamelModel):
    chapter: int
    kind: Literal["appearance", "state_change"]
    attribute: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    reason: Optional[str] = None


class ChapterGraphView(CamelModel):
    chapter_number: int
    data: GraphData
    chapters: List[ChapterSummary] = Field(default_factory=list)


class IngestPayload(CamelModel):
    project_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    chapter_number: int = Field(default=1, ge=1)
    store_in_graph: bool = True


class IngestResult(CamelModel):
    analysis: ChapterAnalysis
    graph_update: Optional[SyncResult] = None


class DemoPayload(CamelModel):
    project_id: str = Field(..., min_length=1)
    clear_existing: bool = False


class DemoResult(CamelModel):
    project_id: str
    chapters_created: int
    results: List[SyncResult] = Field(default_factory=list)
