import pytest

from story_graph import errors
from story_graph.constants import CHAPTER, CHARACTER, PLOT_THREAD, RELATES_TO
from story_graph.demo import build_demo_chapters
from story_graph.services.graph_query import to_graph_edge, to_graph_node
from tests.unit import analysis_helpers as helpers


async def _load_demo(synchronizer, project_id: str = "demo") -> None:
    results = await synchronizer.sync_many(build_demo_chapters(project_id))
    assert all(result.success for result in results), [result.message for result in results]


def _names(data, node_type: str) -> set[str]:
    return {node.label for node in data.nodes if node.type == node_type}


def _relationship(data, label: str):
    return next(edge for edge in data.edges if edge.type == RELATES_TO and edge.label == label)


def test_to_graph_node_applies_presentation_defaults():
    node = to_graph_node(
        {"id": "n1", "label": CHARACTER, "name": "Elena", "project_id": "p1", "key": "elena"}
    )
    unknown = to_graph_node({"id": "n2", "label": "Mystery"})

    assert (node.label, node.type, node.color, node.size) == ("Elena", CHARACTER, "#8B5CF6", 12)
    assert "label" not in node.properties
    assert (unknown.label, unknown.color, unknown.size) == ("Mystery", "#6B7280", 6)


def test_to_graph_edge_labels_relationships_by_type():
    edge = to_graph_edge(
        {
            "id": "e1",
            "type": RELATES_TO,
            "source_id": "a",
            "target_id": "b",
            "relationship_type": "friends_with",
            "strength": 0.9,
        }
    )
    appearance = to_graph_edge({"id": "e2", "type": "APPEARS_IN", "source_id": "a", "target_id": "c"})

    assert (edge.source, edge.target, edge.label) == ("a", "b", "friends_with")
    assert edge.properties == {"id": "e1", "relationship_type": "friends_with", "strength": 0.9}
    assert appearance.label == "APPEARS_IN"


@pytest.mark.asyncio
async def test_overview_contains_whole_project(synchronizer, query):
    await _load_demo(synchronizer)

    overview = query.get_overview("demo")

    assert overview.stats.nodes_by_type[CHARACTER] == 11
    assert overview.stats.nodes_by_type[CHAPTER] == 3
    assert overview.stats.total_nodes == len(overview.nodes)
    assert overview.stats.total_edges == len(overview.edges)
    assert "StateChange" not in overview.stats.nodes_by_type
    node_ids = {node.id for node in overview.nodes}
    assert all(edge.source in node_ids and edge.target in node_ids for edge in overview.edges)


def test_overview_requires_project(query):
    with pytest.raises(errors.ValidationError):
        query.get_overview("")


@pytest.mark.asyncio
async def test_as_of_chapter_hides_later_entities(synchronizer, query):
    await _load_demo(synchronizer)

    first = query.get_as_of_chapter("demo", 1)
    second = query.get_as_of_chapter("demo", 2)

    assert "Pyrrhus" not in _names(first, CHARACTER)
    assert len(_names(first, CHARACTER)) == 5
    assert "Pyrrhus" in _names(second, CHARACTER)
    assert len(_names(second, CHARACTER)) == 7
    assert _names(first, CHAPTER) == {"Chapter 1"}
    visible = {node.id for node in first.nodes}
    assert all(edge.source in visible and edge.target in visible for edge in first.edges)
    assert all(edge.properties["chapter"] <= 1 for edge in first.edges)


@pytest.mark.asyncio
async def test_as_of_chapter_replays_plot_status(synchronizer, query):
    await _load_demo(synchronizer)

    def scheme_status(data):
        return next(
            node.properties["status"]
            for node in data.nodes
            if node.type == PLOT_THREAD and node.label == "Vex's Dark Scheme"
        )

    assert scheme_status(query.get_as_of_chapter("demo", 1)) == "introduced"
    assert scheme_status(query.get_as_of_chapter("demo", 2)) == "developing"
    assert scheme_status(query.get_overview("demo")) == "climax"


@pytest.mark.asyncio
async def test_as_of_chapter_replays_relationship_attributes(synchronizer, query):
    for number, strength, sentiment in ((1, 0.9, "positive"), (2, 0.95, "positive"), (3, 0.2, "negative")):
        await synchronizer.sync_chapter(
            helpers.chapter_payload(
                "p1",
                number,
                relationships=[
                    helpers.relationship("Elena", "Marcus", strength=strength, sentiment=sentiment)
                ],
            )
        )

    first = _relationship(query.get_as_of_chapter("p1", 1), "friends_with")
    second = _relationship(query.get_as_of_chapter("p1", 2), "friends_with")
    current = _relationship(query.get_overview("p1"), "friends_with")

    assert (first.properties["strength"], first.properties["sentiment"]) == (0.9, "positive")
    assert (second.properties["strength"], second.properties["sentiment"]) == (0.95, "positive")
    assert (current.properties["strength"], current.properties["sentiment"]) == (0.2, "negative")


@pytest.mark.asyncio
async def test_as_of_chapter_replays_chapters_ingested_out_of_order(synchronizer, query):
    for number, strength in ((1, 0.9), (3, 0.5), (2, 0.7)):
        result = await synchronizer.sync_chapter(
            helpers.chapter_payload(
                "p1",
                number,
                relationships=[helpers.relationship("Elena", "Marcus", strength=strength)],
            )
        )
        assert result.success

    strengths = [
        _relationship(query.get_as_of_chapter("p1", number), "friends_with").properties["strength"]
        for number in (1, 2, 3)
    ]

    assert strengths == [0.9, 0.7, 0.5]


@pytest.mark.asyncio
async def test_as_of_missing_chapter_is_empty(synchronizer, query):
    await _load_demo(synchronizer)

    missing = query.get_as_of_chapter("demo", 9)

    assert missing.nodes == []
    assert missing.stats.total_nodes == 0


@pytest.mark.asyncio
async def test_list_chapters_is_ordered_regardless_of_ingestion_order(synchronizer, query):
    for number in (3, 1, 2):
        await synchronizer.sync_chapter(helpers.chapter_payload("p1", number))
    await synchronizer.sync_chapter(helpers.chapter_payload("p1", 2))

    chapters = query.list_chapters("p1")

    assert [chapter.number for chapter in chapters] == [1, 2, 3]
    assert [chapter.version for chapter in chapters] == [1, 2, 1]
    assert chapters[0].summary == "Chapter 1 summary"


@pytest.mark.asyncio
async def test_chapter_graph_shows_members_and_navigation(synchronizer, query):
    await _load_demo(synchronizer)

    view = query.get_chapter_graph("demo", 2)

    characters = _names(view.data, CHARACTER)
    assert characters == {"Elena", "Marcus", "Pyrrhus", "Shadow Assassin"}
    assert "Luna" not in characters
    assert [chapter.number for chapter in view.chapters] == [1, 2, 3]
    assert view.chapter_number == 2


@pytest.mark.asyncio
async def test_chapter_graph_for_missing_chapter_keeps_navigation(synchronizer, query):
    await _load_demo(synchronizer)

    view = query.get_chapter_graph("demo", 7)

    assert view.data.nodes == []
    assert len(view.chapters) == 3


@pytest.mark.asyncio
async def test_entity_timeline_merges_appearances_and_changes(synchronizer, query):
    await _load_demo(synchronizer)

    timeline = query.get_entity_timeline("demo", "elena")

    assert [(entry.chapter, entry.kind) for entry in timeline] == [
        (1, "appearance"),
        (1, "state_change"),
        (2, "appearance"),
        (2, "state_change"),
        (3, "appearance"),
        (3, "state_change"),
    ]
    assert timeline[1].attribute == "role"
    assert timeline[1].new_value == "Dragon Keeper"


@pytest.mark.asyncio
async def test_entity_timeline_reports_plot_progress(synchronizer, query):
    await _load_demo(synchronizer)

    timeline = query.get_entity_timeline("demo", "Vex's Dark Scheme", label=PLOT_THREAD)

    changes = [entry for entry in timeline if entry.kind == "state_change"]
    assert [(entry.chapter, entry.new_value) for entry in changes] == [
        (2, "developing"),
        (3, "climax"),
    ]


def test_entity_timeline_unknown_entity(query):
    with pytest.raises(errors.NotFoundError):
        query.get_entity_timeline("demo", "Nobody")


@pytest.mark.asyncio
async def test_clear_is_scoped_to_project(synchronizer, query, store):
    await _load_demo(synchronizer, "alpha")
    await _load_demo(synchronizer, "beta")

    removed = query.clear("alpha")

    assert removed > 0
    assert query.get_overview("alpha").nodes == []
    assert query.list_chapters("alpha") == []
    assert len(query.list_chapters("beta")) == 3
    assert store.fetch_state_changes(project_id="alpha") == []
    assert query.clear("alpha") == 0


@pytest.mark.asyncio
async def test_clear_everything(synchronizer, query):
    await _load_demo(synchronizer, "alpha")
    await _load_demo(synchronizer, "beta")

    query.clear()

    assert query.get_overview("alpha").nodes == []
    assert query.get_overview("beta").nodes == []
