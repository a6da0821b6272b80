import pytest

from story_graph import errors
from story_graph.models import (
    ChapterAnalysis,
    GraphData,
    GraphNode,
    SyncResult,
    parse_analysis,
)


def test_parse_analysis_accepts_camel_case_payload():
    analysis = parse_analysis(
        {
            "projectId": " p1 ",
            "chapterNumber": 2,
            "characters": [{"name": " Elena ", "traits": ["brave"]}],
            "plotThreads": [{"name": "Quest", "status": "developing", "relatedCharacters": ["Elena"]}],
            "temporalMarkers": [{"id": "t1", "type": "flashback", "affectedEvents": ["Duel"]}],
            "context": {"mood": "grim", "tension": "high", "currentTimeline": "past"},
            "unknownSection": {"ignored": True},
        }
    )

    assert analysis.project_id == "p1"
    assert analysis.characters[0].name == "Elena"
    assert analysis.plot_threads[0].related_characters == ["Elena"]
    assert analysis.temporal_markers[0].affected_events == ["Duel"]
    assert analysis.context.current_timeline == "past"
    assert analysis.version == 1


def test_parse_analysis_accepts_workflow_id_alias():
    analysis = parse_analysis({"workflowId": "wf-9", "chapterNumber": 1})

    assert analysis.project_id == "wf-9"
    assert analysis.model_dump(by_alias=True)["projectId"] == "wf-9"


def test_parse_analysis_passes_models_through():
    analysis = ChapterAnalysis(project_id="p1", chapter_number=1)

    assert parse_analysis(analysis) is analysis


@pytest.mark.parametrize(
    "payload, fragment",
    [
        ({"chapterNumber": 1}, "projectId"),
        ({"projectId": "p1", "chapterNumber": 0}, "chapterNumber"),
        ({"projectId": "p1", "chapterNumber": 1, "characters": [{"name": "   "}]}, "characters"),
        (
            {
                "projectId": "p1",
                "chapterNumber": 1,
                "relationships": [{"source": "A", "target": "B", "type": "x", "strength": 1.5}],
            },
            "strength",
        ),
        (
            {"projectId": "p1", "chapterNumber": 1, "plotThreads": [{"name": "Q", "status": "paused"}]},
            "status",
        ),
    ],
)
def test_parse_analysis_rejects_invalid_payloads(payload, fragment):
    with pytest.raises(errors.ValidationError, match=fragment):
        parse_analysis(payload)


def test_parse_analysis_rejects_non_objects():
    with pytest.raises(errors.ValidationError, match="must be an object"):
        parse_analysis(["not", "a", "dict"])


def test_graph_data_build_counts_by_type():
    nodes = [
        GraphNode(id="1", label="Elena", type="Character", color="#fff", size=12),
        GraphNode(id="2", label="Marcus", type="Character", color="#fff", size=12),
        GraphNode(id="3", label="Chapter 1", type="Chapter", color="#fff", size=14),
    ]

    data = GraphData.build(nodes, [])

    assert data.stats.total_nodes == 3
    assert data.stats.nodes_by_type == {"Character": 2, "Chapter": 1}
    assert GraphData.empty().stats.total_edges == 0


def test_sync_result_serializes_camel_case():
    result = SyncResult(success=True, message="ok", project_id="p1", chapter_number=3)

    dumped = result.model_dump(by_alias=True)

    assert dumped["projectId"] == "p1"
    assert dumped["chapterNumber"] == 3
