import pytest

from story_graph import errors
from story_graph.constants import CHARACTER, EVENT
from story_graph.services.entity_resolver import (
    EntityResolver,
    NormalizedNameStrategy,
    StableIdStrategy,
    event_key,
    normalize_name,
)


def _create(tx, label: str, key: str, name: str, **extra):
    return tx.create_node(
        label=label,
        properties={
            "id": f"{label}:{key}",
            "project_id": "p1",
            "key": key,
            "name": name,
            "normalized_name": normalize_name(name),
            **extra,
        },
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Elena", "elena"),
        ("ELENA", "elena"),
        ("  Lord   Vex ", "lord vex"),
        ("Straße", "strasse"),
    ],
)
def test_normalize_name_casefolds_and_collapses_whitespace(raw, expected):
    assert normalize_name(raw) == expected


def test_normalized_name_strategy_ignores_external_id():
    strategy = NormalizedNameStrategy()
    assert strategy.identity_key(label=CHARACTER, name="Elena", external_id="c-1") == "elena"


def test_stable_id_strategy_prefers_canonical_id():
    strategy = StableIdStrategy({"char_elena_2": "elena"})
    assert strategy.identity_key(label=CHARACTER, name="Elena", external_id="char_elena_2") == "id:elena"
    assert strategy.identity_key(label=CHARACTER, name="Elena", external_id="other") == "id:other"
    assert strategy.identity_key(label=CHARACTER, name="Elena") == "elena"


def test_key_for_rejects_chapter_scoped_labels():
    resolver = EntityResolver()
    with pytest.raises(ValueError):
        resolver.key_for(label=EVENT, name="Battle")


def test_resolve_matches_case_insensitive_name(store):
    resolver = EntityResolver()
    with store.transaction() as tx:
        created = _create(tx, CHARACTER, "elena", "Elena")
        found = resolver.resolve(tx, project_id="p1", label=CHARACTER, name="ELENA")
        missing = resolver.resolve(tx, project_id="p2", label=CHARACTER, name="Elena")

    assert found["id"] == created["id"]
    assert missing is None


def test_stable_id_resolver_falls_back_to_unique_name(store):
    resolver = EntityResolver(StableIdStrategy())
    with store.transaction() as tx:
        created = _create(tx, CHARACTER, "id:c-7", "Marcus")
        by_name = resolver.resolve(tx, project_id="p1", label=CHARACTER, name="marcus")
        by_id = resolver.resolve(
            tx, project_id="p1", label=CHARACTER, name="Marcus the Archer", external_id="c-7"
        )

    assert by_name["id"] == created["id"]
    assert by_id["id"] == created["id"]


def test_stable_id_resolver_rejects_ambiguous_name(store):
    resolver = EntityResolver(StableIdStrategy())
    with pytest.raises(errors.ResolutionError, match="ambiguous"):
        with store.transaction() as tx:
            _create(tx, CHARACTER, "id:a", "Alex")
            _create(tx, CHARACTER, "id:b", "Alex")
            resolver.resolve(tx, project_id="p1", label=CHARACTER, name="Alex")


def test_resolve_event_prefers_current_chapter_then_latest_earlier(store):
    resolver = EntityResolver()
    with store.transaction() as tx:
        _create(tx, EVENT, event_key(1, "Duel"), "Duel", chapter=1, sequence=0)
        second = _create(tx, EVENT, event_key(2, "Duel"), "Duel", chapter=2, sequence=3)
        fourth = _create(tx, EVENT, event_key(4, "Duel"), "Duel", chapter=4, sequence=0)

        in_chapter_four = resolver.resolve_event(tx, project_id="p1", name="duel", chapter=4)
        in_chapter_three = resolver.resolve_event(tx, project_id="p1", name="Duel", chapter=3)
        before_any = resolver.resolve_event(tx, project_id="p1", name="Duel", chapter=1)
        unknown = resolver.resolve_event(tx, project_id="p1", name="Feast", chapter=4)

    assert in_chapter_four["id"] == fourth["id"]
    assert in_chapter_three["id"] == second["id"]
    assert before_any["chapter"] == 1
    assert unknown is None
