"""The three-chapter "Enchanted Kingdom" demo story, as analyzer payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def _character(ref: str, name: str, role: str, description: str, traits: list[str]) -> dict[str, Any]:
    return {"id": ref, "name": name, "role": role, "description": description, "traits": traits}


def _event(
    ref: str,
    name: str,
    description: str,
    kind: str,
    characters: list[str],
    location: str,
    temporal_type: str = "current",
) -> dict[str, Any]:
    return {
        "id": ref,
        "name": name,
        "description": description,
        "type": kind,
        "characters": characters,
        "location": location,
        "isTemporal": temporal_type != "current",
        "temporalType": temporal_type,
    }


def _relationship(
    ref: str,
    source: str,
    target: str,
    kind: str,
    description: str,
    sentiment: str,
    strength: float,
    *,
    target_type: str = "Character",
) -> dict[str, Any]:
    return {
        "id": ref,
        "source": source,
        "sourceType": "Character",
        "target": target,
        "targetType": target_type,
        "type": kind,
        "description": description,
        "sentiment": sentiment,
        "strength": strength,
    }


def _chapter_one() -> dict[str, Any]:
    return {
        "chapterNumber": 1,
        "summary": (
            "In the kingdom of Aethoria, young Elena discovers she is the prophesied "
            "Dragon Keeper, destined to restore balance between humans and dragons."
        ),
        "characters": [
            _character(
                "char_elena_1",
                "Elena",
                "protagonist",
                "A 17-year-old village girl with silver hair and violet eyes",
                ["brave", "curious", "compassionate"],
            ),
            _character(
                "char_marcus_1",
                "Marcus",
                "supporting",
                "Elena's childhood friend and skilled archer",
                ["loyal", "protective", "skilled"],
            ),
            _character(
                "char_aldric_1",
                "King Aldric",
                "supporting",
                "The aging king of Aethoria",
                ["wise", "concerned", "just"],
            ),
            _character(
                "char_seraphina_1",
                "Seraphina",
                "supporting",
                "Ancient oracle who lives in the Crystal Cave",
                ["mysterious", "prophetic", "ethereal"],
            ),
            _character(
                "char_vex_1",
                "Lord Vex",
                "antagonist",
                "Dark sorcerer seeking to control all dragons",
                ["ambitious", "cunning", "ruthless"],
            ),
        ],
        "locations": [
            {
                "id": "loc_aethoria_1",
                "name": "Aethoria",
                "type": "exterior",
                "description": "A magical kingdom where humans and dragons once lived in harmony",
            },
            {
                "id": "loc_willowbrook_1",
                "name": "Willowbrook Village",
                "type": "exterior",
                "description": "Elena's home village at the edge of the Whispering Woods",
                "containedIn": "Aethoria",
            },
            {
                "id": "loc_crystal_cave_1",
                "name": "Crystal Cave",
                "type": "interior",
                "description": "Sacred cave where the oracle Seraphina dwells",
            },
            {
                "id": "loc_castle_1",
                "name": "Royal Castle",
                "type": "interior",
                "description": "The seat of power in Aethoria",
            },
        ],
        "objects": [
            {
                "id": "obj_amulet_1",
                "name": "Dragon Amulet",
                "type": "macguffin",
                "description": "Ancient artifact that allows communication with dragons",
                "significance": "Key to Elena's powers",
                "owner": "Elena",
            },
            {
                "id": "obj_prophecy_scroll_1",
                "name": "Prophecy Scroll",
                "type": "document",
                "description": "Ancient scroll containing the Dragon Keeper prophecy",
                "significance": "Reveals Elena's destiny",
            },
        ],
        "events": [
            _event(
                "evt_discovery_1",
                "Elena Discovers Amulet",
                "Elena finds the Dragon Amulet in her grandmother's chest",
                "revelation",
                ["Elena"],
                "Willowbrook Village",
            ),
            _event(
                "evt_vision_1",
                "First Dragon Vision",
                "The amulet shows Elena visions of dragons in peril",
                "revelation",
                ["Elena"],
                "Willowbrook Village",
                "flashforward",
            ),
            _event(
                "evt_prophecy_1",
                "Oracle's Prophecy",
                "Seraphina reveals the ancient prophecy to Elena",
                "revelation",
                ["Elena", "Seraphina"],
                "Crystal Cave",
            ),
        ],
        "relationships": [
            _relationship(
                "rel_1", "Elena", "Marcus", "friends_with", "Childhood friends", "positive", 0.9
            ),
            _relationship(
                "rel_2",
                "Elena",
                "Dragon Amulet",
                "owns",
                "Elena possesses the ancient amulet",
                "positive",
                1.0,
                target_type="Object",
            ),
            _relationship(
                "rel_3",
                "Lord Vex",
                "Dragon Amulet",
                "desires",
                "Vex seeks to steal the amulet",
                "negative",
                0.95,
                target_type="Object",
            ),
            _relationship(
                "rel_4",
                "Seraphina",
                "Crystal Cave",
                "resides_in",
                "Oracle's dwelling",
                "neutral",
                1.0,
                target_type="Location",
            ),
        ],
        "stateChanges": [
            {
                "entityId": "char_elena_1",
                "entityType": "Character",
                "attribute": "role",
                "oldValue": "village girl",
                "newValue": "Dragon Keeper",
                "reason": "Prophecy revealed",
            },
        ],
        "temporalMarkers": [
            {
                "id": "temp_1",
                "type": "flashforward",
                "description": "Vision of dragons in chains",
                "fromTime": "present",
                "toTime": "future",
                "affectedEvents": ["First Dragon Vision"],
            },
        ],
        "plotThreads": [
            {
                "id": "plot_prophecy_1",
                "name": "The Dragon Keeper Prophecy",
                "description": "Elena's journey to fulfill her destiny",
                "status": "introduced",
                "relatedCharacters": ["Elena", "Seraphina"],
                "relatedEvents": ["Oracle's Prophecy"],
            },
            {
                "id": "plot_vex_1",
                "name": "Vex's Dark Scheme",
                "description": "Lord Vex's plot to control all dragons",
                "status": "introduced",
                "relatedCharacters": ["Lord Vex"],
                "relatedEvents": [],
            },
        ],
        "context": {"mood": "mysterious", "tension": "medium", "currentTimeline": "present"},
    }


def _chapter_two() -> dict[str, Any]:
    return {
        "chapterNumber": 2,
        "summary": (
            "Elena and Marcus begin their journey to Dragon's Peak, encountering the "
            "mysterious dragon Pyrrhus who becomes Elena's first dragon ally."
        ),
        "characters": [
            _character(
                "char_elena_2",
                "Elena",
                "protagonist",
                "The prophesied Dragon Keeper",
                ["brave", "determined", "growing"],
            ),
            _character(
                "char_marcus_2",
                "Marcus",
                "supporting",
                "Elena's loyal companion",
                ["loyal", "protective", "skilled"],
            ),
            _character(
                "char_pyrrhus_2",
                "Pyrrhus",
                "supporting",
                "Ancient fire dragon, last of the Elder Dragons",
                ["wise", "powerful", "cautious"],
            ),
            _character(
                "char_shadow_2",
                "Shadow Assassin",
                "antagonist",
                "Mysterious figure sent by Vex",
                ["silent", "deadly", "obedient"],
            ),
        ],
        "locations": [
            {
                "id": "loc_whispering_woods_2",
                "name": "Whispering Woods",
                "type": "exterior",
                "description": "Enchanted forest between Willowbrook and Dragon's Peak",
            },
            {
                "id": "loc_dragons_peak_2",
                "name": "Dragon's Peak",
                "type": "exterior",
                "description": "Sacred mountain where dragons make their home",
            },
            {
                "id": "loc_pyrrhus_lair_2",
                "name": "Pyrrhus's Lair",
                "type": "interior",
                "description": "Ancient cavern filled with dragon fire crystals",
                "containedIn": "Dragon's Peak",
            },
        ],
        "objects": [
            {
                "id": "obj_dragon_amulet_2",
                "name": "Dragon Amulet",
                "type": "macguffin",
                "description": "Glows brighter as Elena nears dragons",
                "significance": "Connection to dragon kind",
                "owner": "Elena",
            },
            {
                "id": "obj_shadow_dagger_2",
                "name": "Shadow Dagger",
                "type": "weapon",
                "description": "Enchanted blade that can wound dragons",
                "significance": "Threat to dragons",
                "owner": "Shadow Assassin",
            },
            {
                "id": "obj_fire_crystal_2",
                "name": "Fire Crystal",
                "type": "symbolic",
                "description": "Gift from Pyrrhus to Elena",
                "significance": "Symbol of dragon alliance",
                "owner": "Elena",
            },
        ],
        "events": [
            _event(
                "evt_woods_attack_2",
                "Ambush in the Woods",
                "Shadow Assassin attacks Elena and Marcus",
                "conflict",
                ["Elena", "Marcus", "Shadow Assassin"],
                "Whispering Woods",
            ),
            _event(
                "evt_first_flight_2",
                "Elena's First Dragon Flight",
                "Pyrrhus saves Elena and takes her flying",
                "action",
                ["Elena", "Pyrrhus"],
                "Dragon's Peak",
            ),
            _event(
                "evt_bond_2",
                "Dragon Bond Formed",
                "Elena and Pyrrhus form a telepathic bond",
                "revelation",
                ["Elena", "Pyrrhus"],
                "Pyrrhus's Lair",
            ),
            _event(
                "evt_memory_2",
                "Pyrrhus's Memory",
                "Elena sees the Great Dragon War through Pyrrhus's memories",
                "revelation",
                ["Elena", "Pyrrhus"],
                "Pyrrhus's Lair",
                "flashback",
            ),
        ],
        "relationships": [
            _relationship(
                "rel_5", "Elena", "Pyrrhus", "bonded_with", "Dragon-rider bond", "positive", 0.85
            ),
            _relationship(
                "rel_6",
                "Shadow Assassin",
                "Lord Vex",
                "serves",
                "Assassin sent by Vex",
                "negative",
                1.0,
            ),
            _relationship(
                "rel_7",
                "Marcus",
                "Elena",
                "protects",
                "Marcus defends Elena from assassin",
                "positive",
                0.95,
            ),
            _relationship(
                "rel_8",
                "Pyrrhus",
                "Pyrrhus's Lair",
                "resides_in",
                "Dragon's ancient home",
                "neutral",
                1.0,
                target_type="Location",
            ),
        ],
        "stateChanges": [
            {
                "entityId": "char_elena_2",
                "entityType": "Character",
                "attribute": "abilities",
                "oldValue": "untrained",
                "newValue": "dragon bonded",
                "reason": "Formed bond with Pyrrhus",
            },
            {
                "entityId": "char_marcus_2",
                "entityType": "Character",
                "attribute": "status",
                "oldValue": "uninjured",
                "newValue": "wounded",
                "reason": "Injured protecting Elena",
            },
        ],
        "temporalMarkers": [
            {
                "id": "temp_2",
                "type": "flashback",
                "description": "The Great Dragon War, 500 years ago",
                "fromTime": "present",
                "toTime": "500 years ago",
                "affectedEvents": ["Pyrrhus's Memory"],
            },
        ],
        "plotThreads": [
            {
                "id": "plot_prophecy_2",
                "name": "The Dragon Keeper Prophecy",
                "description": "Elena gains her first dragon ally",
                "status": "developing",
                "relatedCharacters": ["Elena", "Pyrrhus"],
                "relatedEvents": ["Dragon Bond Formed"],
            },
            {
                "id": "plot_vex_2",
                "name": "Vex's Dark Scheme",
                "description": "Vex sends assassins after Elena",
                "status": "developing",
                "relatedCharacters": ["Lord Vex", "Shadow Assassin"],
                "relatedEvents": ["Ambush in the Woods"],
            },
            {
                "id": "plot_love_2",
                "name": "Unspoken Love",
                "description": "Marcus's growing feelings for Elena",
                "status": "introduced",
                "relatedCharacters": ["Marcus", "Elena"],
                "relatedEvents": [],
            },
        ],
        "context": {"mood": "adventurous", "tension": "high", "currentTimeline": "present"},
    }


def _chapter_three() -> dict[str, Any]:
    return {
        "chapterNumber": 3,
        "summary": (
            "Elena discovers that Lord Vex has captured three dragons and is draining "
            "their magic. She must infiltrate his fortress to free them."
        ),
        "characters": [
            _character(
                "char_elena_3",
                "Elena",
                "protagonist",
                "Growing into her role as Dragon Keeper",
                ["brave", "powerful", "compassionate"],
            ),
            _character(
                "char_pyrrhus_3",
                "Pyrrhus",
                "supporting",
                "Elena's dragon ally",
                ["wise", "protective", "powerful"],
            ),
            _character(
                "char_luna_3",
                "Luna",
                "supporting",
                "Young moonlight dragon, captive of Vex",
                ["frightened", "gentle", "hopeful"],
            ),
            _character(
                "char_storm_3",
                "Storm",
                "supporting",
                "Tempest dragon, captive of Vex",
                ["angry", "fierce", "vengeful"],
            ),
            _character(
                "char_vex_3",
                "Lord Vex",
                "antagonist",
                "Revealed to be a former dragon rider corrupted by dark magic",
                ["powerful", "bitter", "tragic"],
            ),
            _character(
                "char_lyra_3",
                "Lyra",
                "supporting",
                "Spy within Vex's fortress, former knight",
                ["cunning", "brave", "mysterious"],
            ),
        ],
        "locations": [
            {
                "id": "loc_shadow_fortress_3",
                "name": "Shadow Fortress",
                "type": "interior",
                "description": "Vex's dark stronghold built on corrupted dragon bones",
            },
            {
                "id": "loc_dragon_prison_3",
                "name": "Dragon Prison",
                "type": "interior",
                "description": "Underground chambers where dragons are held and drained",
                "containedIn": "Shadow Fortress",
            },
            {
                "id": "loc_throne_room_3",
                "name": "Dark Throne Room",
                "type": "interior",
                "description": "Where Vex draws power from dragon essence",
                "containedIn": "Shadow Fortress",
            },
        ],
        "objects": [
            {
                "id": "obj_drain_device_3",
                "name": "Soul Drain Device",
                "type": "macguffin",
                "description": "Magical apparatus that extracts dragon essence",
                "significance": "Source of Vex's power",
                "owner": "Lord Vex",
            },
            {
                "id": "obj_key_3",
                "name": "Dragon Prison Key",
                "type": "prop",
                "description": "Enchanted key to release dragons",
                "significance": "Needed to free captive dragons",
                "owner": "Lord Vex",
            },
            {
                "id": "obj_map_3",
                "name": "Fortress Map",
                "type": "document",
                "description": "Secret map of fortress passages",
                "significance": "Enables infiltration",
                "owner": "Lyra",
            },
        ],
        "events": [
            _event(
                "evt_infiltration_3",
                "Fortress Infiltration",
                "Elena sneaks into Shadow Fortress with Lyra's help",
                "action",
                ["Elena", "Lyra"],
                "Shadow Fortress",
            ),
            _event(
                "evt_dragon_rescue_3",
                "Dragon Rescue",
                "Elena frees Luna and Storm from their prisons",
                "action",
                ["Elena", "Luna", "Storm"],
                "Dragon Prison",
            ),
            _event(
                "evt_confrontation_3",
                "Confrontation with Vex",
                "Elena faces Vex and learns his tragic past",
                "conflict",
                ["Elena", "Lord Vex"],
                "Dark Throne Room",
            ),
            _event(
                "evt_vex_past_3",
                "Vex's Tragedy",
                "Flashback reveals Vex's dragon partner was killed by humans",
                "revelation",
                ["Lord Vex"],
                "Dark Throne Room",
                "flashback",
            ),
            _event(
                "evt_escape_3",
                "Dramatic Escape",
                "Pyrrhus and freed dragons help Elena escape as fortress crumbles",
                "action",
                ["Elena", "Pyrrhus", "Luna", "Storm"],
                "Shadow Fortress",
            ),
        ],
        "relationships": [
            _relationship(
                "rel_9", "Elena", "Luna", "protects", "Elena rescues Luna", "positive", 0.8
            ),
            _relationship(
                "rel_10", "Elena", "Storm", "rescues", "Elena frees Storm", "positive", 0.7
            ),
            _relationship(
                "rel_11",
                "Lyra",
                "Elena",
                "allies_with",
                "Lyra helps Elena infiltrate",
                "positive",
                0.85,
            ),
            _relationship(
                "rel_12",
                "Lord Vex",
                "Dragons",
                "hates",
                "Vex blames dragons for his loss",
                "negative",
                0.9,
            ),
            _relationship(
                "rel_13",
                "Elena",
                "Lord Vex",
                "pities",
                "Elena understands Vex's pain",
                "ambiguous",
                0.5,
            ),
        ],
        "stateChanges": [
            {
                "entityId": "char_luna_3",
                "entityType": "Character",
                "attribute": "status",
                "oldValue": "captive",
                "newValue": "free",
                "reason": "Rescued by Elena",
            },
            {
                "entityId": "char_storm_3",
                "entityType": "Character",
                "attribute": "status",
                "oldValue": "captive",
                "newValue": "free",
                "reason": "Rescued by Elena",
            },
            {
                "entityId": "loc_shadow_fortress_3",
                "entityType": "Location",
                "attribute": "status",
                "oldValue": "intact",
                "newValue": "crumbling",
                "reason": "Damaged during escape",
            },
            {
                "entityId": "char_elena_3",
                "entityType": "Character",
                "attribute": "power",
                "oldValue": "moderate",
                "newValue": "growing",
                "reason": "Bonded with more dragons",
            },
        ],
        "temporalMarkers": [
            {
                "id": "temp_3",
                "type": "flashback",
                "description": "The death of Vex's dragon partner, 30 years ago",
                "fromTime": "present",
                "toTime": "30 years ago",
                "affectedEvents": ["Vex's Tragedy"],
            },
        ],
        "plotThreads": [
            {
                "id": "plot_prophecy_3",
                "name": "The Dragon Keeper Prophecy",
                "description": "Elena grows stronger with each dragon she saves",
                "status": "developing",
                "relatedCharacters": ["Elena", "Luna", "Storm"],
                "relatedEvents": ["Dragon Rescue"],
            },
            {
                "id": "plot_vex_3",
                "name": "Vex's Dark Scheme",
                "description": "Vex's motivations revealed but his threat remains",
                "status": "climax",
                "relatedCharacters": ["Lord Vex", "Elena"],
                "relatedEvents": ["Confrontation with Vex"],
            },
            {
                "id": "plot_redemption_3",
                "name": "Path to Redemption",
                "description": "Can Vex be redeemed?",
                "status": "introduced",
                "relatedCharacters": ["Lord Vex", "Elena"],
                "relatedEvents": ["Vex's Tragedy"],
            },
        ],
        "context": {"mood": "epic", "tension": "critical", "currentTimeline": "present"},
    }


def build_demo_chapters(project_id: str, *, now: datetime | None = None) -> list[dict[str, Any]]:
    """Chapter payloads in analyzer format, tagged with ``project_id``."""
    stamp = now or datetime.now(timezone.utc)
    chapters = [_chapter_one(), _chapter_two(), _chapter_three()]
    for chapter in chapters:
        number = chapter["chapterNumber"]
        chapter.update(
            {
                "projectId": project_id,
                "chapterId": f"chapter_{number}_{int(stamp.timestamp())}",
                "version": 1,
                "timestamp": stamp.isoformat(),
            }
        )
    return chapters
