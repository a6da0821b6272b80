import pytest
from fastapi.testclient import TestClient

from story_graph import main
from story_graph.main import app
from tests.unit import analysis_helpers as helpers

MANUSCRIPT = (
    "Lyra slipped the Fortress Map into Elena's hand and vanished into the "
    "shadows of the Dark Throne Room before the guards returned."
)


class StaticAnalyzer:
    async def analyze(self, *, project_id, text, chapter_number, context):
        return {
            "characters": [{"name": "Lyra"}, {"name": "Elena"}],
            "objects": [{"name": "Fortress Map", "owner": "Elena"}],
            "context": {"mood": "tense", "tension": "high"},
        }


@pytest.fixture()
def client(engine):
    app.dependency_overrides = {}
    app.dependency_overrides[main.get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture()
def demo_client(client):
    response = client.post("/api/v1/story-graph/demo", json={"projectId": "demo"})
    assert response.status_code == 200
    return client


def test_schema_endpoint_reports_ensured_count(client):
    response = client.post("/api/v1/story-graph/schema")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["ensured"] > 0


def test_sync_endpoint_merges_chapter(client):
    payload = helpers.chapter_payload("p1", 1, characters=[helpers.character("Elena")])

    response = client.post("/api/v1/story-graph/sync", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["chapterNumber"] == 1
    assert body["counts"]["nodes_created"] == 2


def test_sync_endpoint_reports_invalid_analysis(client):
    response = client.post("/api/v1/story-graph/sync", json={"projectId": "p1"})

    assert response.status_code == 200
    assert response.json()["success"] is False


def test_demo_endpoint_creates_three_chapters(client):
    response = client.post("/api/v1/story-graph/demo", json={"projectId": "demo"})

    assert response.status_code == 200
    assert response.json()["chaptersCreated"] == 3


def test_overview_and_time_travel(demo_client):
    overview = demo_client.get("/api/v1/projects/demo/graph").json()
    first = demo_client.get("/api/v1/projects/demo/graph/as-of/1").json()

    assert overview["stats"]["nodesByType"]["Character"] == 11
    assert first["stats"]["nodesByType"]["Character"] == 5
    assert overview["stats"]["totalEdges"] == len(overview["edges"])
    node = overview["nodes"][0]
    assert {"id", "label", "type", "properties", "color", "size"} <= set(node)


def test_as_of_rejects_chapter_zero(demo_client):
    response = demo_client.get("/api/v1/projects/demo/graph/as-of/0")

    assert response.status_code == 422


def test_chapter_navigation(demo_client):
    chapters = demo_client.get("/api/v1/projects/demo/chapters").json()
    view = demo_client.get("/api/v1/projects/demo/chapters/2").json()

    assert [chapter["number"] for chapter in chapters] == [1, 2, 3]
    assert view["chapterNumber"] == 2
    assert len(view["chapters"]) == 3
    assert "Pyrrhus" in {node["label"] for node in view["data"]["nodes"]}


def test_context_endpoint(demo_client):
    context = demo_client.get("/api/v1/projects/demo/context").json()

    assert context["mood"] == "epic"
    assert context["currentLocation"] == "Shadow Fortress"
    assert "Elena" in context["activeCharacters"]


def test_timeline_endpoint(demo_client):
    response = demo_client.get(
        "/api/v1/projects/demo/entities/Vex's Dark Scheme/timeline",
        params={"label": "PlotThread"},
    )

    assert response.status_code == 200
    changes = [entry for entry in response.json() if entry["kind"] == "state_change"]
    assert [entry["newValue"] for entry in changes] == ["developing", "climax"]


def test_timeline_unknown_entity_is_404(demo_client):
    response = demo_client.get("/api/v1/projects/demo/entities/Nobody/timeline")

    assert response.status_code == 404


def test_timeline_unknown_label_is_422(demo_client):
    response = demo_client.get(
        "/api/v1/projects/demo/entities/Elena/timeline", params={"label": "StateChange"}
    )

    assert response.status_code == 422


def test_clear_project_endpoint(demo_client):
    response = demo_client.delete("/api/v1/projects/demo/graph")

    assert response.status_code == 200
    assert response.json()["removed"] > 0
    assert demo_client.get("/api/v1/projects/demo/chapters").json() == []


def test_clear_store_endpoint(demo_client):
    response = demo_client.delete("/api/v1/story-graph")

    assert response.status_code == 200
    assert demo_client.get("/api/v1/projects/demo/graph").json()["nodes"] == []


def test_ingest_endpoint_uses_analyzer(client):
    app.dependency_overrides[main.get_manuscript_analyzer] = lambda: StaticAnalyzer()

    response = client.post(
        "/api/v1/story-graph/ingest",
        json={"projectId": "p1", "text": MANUSCRIPT, "chapterNumber": 3},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["analysis"]["projectId"] == "p1"
    assert body["analysis"]["chapterNumber"] == 3
    assert body["graphUpdate"]["success"] is True
    context = client.get("/api/v1/projects/p1/context").json()
    assert context["mood"] == "tense"


def test_ingest_endpoint_rejects_short_text(client):
    app.dependency_overrides[main.get_manuscript_analyzer] = lambda: StaticAnalyzer()

    response = client.post(
        "/api/v1/story-graph/ingest", json={"projectId": "p1", "text": "Too short."}
    )

    assert response.status_code == 422
    assert "at least" in response.json()["detail"]


def test_ingest_endpoint_without_analyzer_is_503(client):
    response = client.post(
        "/api/v1/story-graph/ingest", json={"projectId": "p1", "text": MANUSCRIPT}
    )

    assert response.status_code == 503
