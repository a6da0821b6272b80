"""Constraint and index definitions shared by every store backend."""

from __future__ import annotations

from story_graph.constants import CHAPTER, GRAPH_LABELS, MERGEABLE_LABELS, STATE_CHANGE

# Identity of every graph node within its project. For mergeable entities the key
# is the resolved identity key (the normalized name under the default strategy).
UNIQUE_CONSTRAINTS = [
    {"label": label, "properties": ["project_id", "key"]} for label in GRAPH_LABELS
]

INDEX_DEFINITIONS = [
    {"label": CHAPTER, "property": "number"},
    *({"label": label, "property": "normalized_name"} for label in MERGEABLE_LABELS),
    *({"label": label, "property": "project_id"} for label in (*GRAPH_LABELS, STATE_CHANGE)),
    {"label": STATE_CHANGE, "property": "entity_id"},
]


def constraint_statement(label: str, properties: list[str]) -> str:
    fields = ", ".join(f"n.{prop}" for prop in properties)
    return f"CREATE CONSTRAINT ON (n:{label}) ASSERT {fields} IS UNIQUE;"


def index_statement(label: str, property: str) -> str:
    return f"CREATE INDEX ON :{label}({property});"
