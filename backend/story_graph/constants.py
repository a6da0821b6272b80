from __future__ import annotations

CHARACTER = "Character"
LOCATION = "Location"
OBJECT = "Object"
EVENT = "Event"
PLOT_THREAD = "PlotThread"
CHAPTER = "Chapter"
TEMPORAL_MARKER = "TemporalMarker"
STATE_CHANGE = "StateChange"

# Entity types resolved by identity key and merged across chapters.
MERGEABLE_LABELS = (CHARACTER, LOCATION, OBJECT, PLOT_THREAD)

# Node types surfaced by read queries; StateChange is audit-only.
GRAPH_LABELS = (CHARACTER, LOCATION, OBJECT, EVENT, PLOT_THREAD, CHAPTER, TEMPORAL_MARKER)

RELATIONSHIP_ENDPOINT_LABELS = (CHARACTER, LOCATION, OBJECT, EVENT, PLOT_THREAD)

APPEARS_IN = "APPEARS_IN"
RELATES_TO = "RELATES_TO"
INVOLVES = "INVOLVES"
AT = "AT"
OWNS = "OWNS"
CONTAINED_IN = "CONTAINED_IN"
ADVANCES = "ADVANCES"
RELATES_EVENT = "RELATES_EVENT"
AFFECTS = "AFFECTS"

EDGE_TYPES = (
    APPEARS_IN,
    RELATES_TO,
    INVOLVES,
    AT,
    OWNS,
    CONTAINED_IN,
    ADVANCES,
    RELATES_EVENT,
    AFFECTS,
)

NODE_COLORS = {
    CHARACTER: "#8B5CF6",
    LOCATION: "#10B981",
    OBJECT: "#F59E0B",
    EVENT: "#EF4444",
    PLOT_THREAD: "#EC4899",
    CHAPTER: "#3B82F6",
    TEMPORAL_MARKER: "#6B7280",
}

NODE_SIZES = {
    CHARACTER: 12,
    LOCATION: 10,
    OBJECT: 6,
    EVENT: 8,
    PLOT_THREAD: 10,
    CHAPTER: 14,
    TEMPORAL_MARKER: 4,
}

DEFAULT_NODE_COLOR = "#6B7280"
DEFAULT_NODE_SIZE = 6

PLOT_STATUS_RANK = {
    "introduced": 0,
    "developing": 1,
    "climax": 2,
    "resolved": 3,
    "abandoned": 3,
}
CLOSED_PLOT_STATUSES = frozenset({"resolved", "abandoned"})

# Attributes reconstructed by audit replay in time-travel queries.
REPLAYED_EDGE_ATTRIBUTES = ("sentiment", "strength")
REPLAYED_NODE_ATTRIBUTES = ("status",)

RELATIONSHIP_ENTITY_TYPE = "Relationship"

MIN_MANUSCRIPT_LENGTH = 50
