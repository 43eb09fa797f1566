from __future__ import annotations

import pytest

from storyflow.exceptions import StageNotReadyError
from storyflow.schemas import Foundation, FoundationStage, Stage, WorldData
from storyflow.tracker import (
    CreationTracker,
    FoundationTracker,
    extract_main_genre,
    finalize_character,
    finalize_world,
    is_character_complete,
    is_character_summary_complete,
    is_genre_summary_complete,
    list_stage_definitions,
)
from storyflow.transitions import Command, CommandKind

GENRE_SUMMARY = (
    "I've created a fantasy genre profile for your story world.\n\n"
    '```json\n{"name": "Ember Fantasy", "mainGenre": "Fantasy", "themes": ["Loss"]}\n```'
)

MARA = {
    "name": "Mara",
    "background": "Raised on the river docks by a band of smugglers",
    "personality": ["Wry"],
}


def test_genre_summary_detection() -> None:
    assert is_genre_summary_complete(GENRE_SUMMARY)
    assert is_genre_summary_complete('{"mainGenre": "Horror"}')
    assert not is_genre_summary_complete("Tell me more about the mood you want.")


def test_extract_main_genre() -> None:
    assert extract_main_genre(GENRE_SUMMARY) == "Fantasy"
    assert extract_main_genre("Genre: Cyberpunk noir. Mood: bleak") == "Cyberpunk noir"
    assert extract_main_genre("No idea yet") is None


def test_character_completeness() -> None:
    assert is_character_complete(MARA)
    assert not is_character_complete({**MARA, "background": "Short"})
    assert not is_character_complete({**MARA, "personality": []})
    assert not is_character_complete({**MARA, "name": "  "})
    assert not is_character_complete({**MARA, "name": ["Mara"]})
    assert not is_character_complete({**MARA, "background": 42})
    assert not is_character_complete({**MARA, "personality": 3})


def test_character_summary_uses_json_when_present() -> None:
    assert is_character_summary_complete('I\'ve created a character named X. {"name": "X"}') is False
    assert is_character_summary_complete("I've created a character named Mara.")


def test_finalize_world_fills_defaults() -> None:
    world = finalize_world({}, genre="Fantasy")

    assert world.name == "Untitled World"
    assert world.genre == "Fantasy"
    assert world.complexity == 3
    assert world.regions == []
    assert world.magic_system is None


def test_finalized_world_survives_json_storage() -> None:
    world = finalize_world({"name": "Aster", "regions": ["North"], "magic_system": "Tide magic"})

    stored = world.model_dump_json(by_alias=True)

    assert '"keyConflicts"' in stored
    assert WorldData.model_validate_json(stored) == world


def test_finalize_character_fills_defaults() -> None:
    character = finalize_character({"name": "Mara"})

    assert character.role == "Unknown role"
    assert character.depth == 5
    assert finalize_character({}).name == "Unnamed Character"


def test_completion_flags_never_reset() -> None:
    tracker = FoundationTracker()

    assert tracker.mark_complete(FoundationStage.GENRE)
    assert not tracker.mark_complete(FoundationStage.GENRE)
    tracker.merge_flags({"genre": False, "world": True})

    assert tracker.flags == {"genre": True, "environment": False, "world": True, "character": False}
    assert not tracker.mark_complete(FoundationStage.READY)


def test_tracker_from_foundation() -> None:
    foundation = Foundation(
        id=1,
        name="Skyfall",
        current_stage=FoundationStage.WORLD,
        genre_completed=True,
    )

    tracker = FoundationTracker.from_foundation(foundation)

    assert tracker.stage is FoundationStage.WORLD
    assert tracker.is_complete(FoundationStage.GENRE)
    assert tracker.show_foundation_components


def test_completed_reply_advances_and_notifies() -> None:
    tracker = FoundationTracker()

    assert tracker.apply_reply(GENRE_SUMMARY)
    assert tracker.stage is FoundationStage.ENVIRONMENT
    assert tracker.is_complete(FoundationStage.GENRE)
    assert tracker.show_foundation_components
    assert [note.title for note in tracker.notifications] == ["Environment stage"]


def test_incomplete_reply_keeps_stage() -> None:
    tracker = FoundationTracker()

    assert not tracker.apply_reply("What mood should the story carry?")
    assert tracker.stage is FoundationStage.GENRE
    assert tracker.notifications == []


def test_apply_command() -> None:
    tracker = FoundationTracker()

    tracker.apply_command(Command(CommandKind.SHOW_COMPONENTS))
    assert tracker.show_foundation_components
    tracker.apply_command(Command(CommandKind.HIDE_COMPONENTS))
    assert not tracker.show_foundation_components

    assert tracker.apply_command(Command(CommandKind.MOVE_TO, FoundationStage.CHARACTER))
    assert tracker.stage is FoundationStage.CHARACTER
    assert tracker.apply_command(Command(CommandKind.NEXT_STAGE))
    assert tracker.stage is FoundationStage.READY
    assert not tracker.apply_command(Command(CommandKind.NEXT_STAGE))


def test_server_transition_only_moves_forward() -> None:
    tracker = FoundationTracker(FoundationStage.WORLD)

    moved = tracker.apply_server_transition(
        FoundationStage.GENRE,
        is_auto_transition=False,
        current_stage=FoundationStage.GENRE,
    )
    assert not moved
    assert tracker.stage is FoundationStage.WORLD

    moved = tracker.apply_server_transition(
        FoundationStage.CHARACTER,
        is_auto_transition=True,
        flags={"world": True},
    )
    assert moved
    assert tracker.stage is FoundationStage.CHARACTER
    assert tracker.is_complete(FoundationStage.WORLD)


def test_begin_story_gate() -> None:
    tracker = FoundationTracker()
    assert tracker.missing_for_story() == ["genre", "world", "character", "ready"]
    assert not tracker.can_begin_story

    for stage in (FoundationStage.GENRE, FoundationStage.WORLD, FoundationStage.CHARACTER):
        tracker.mark_complete(stage)
    assert tracker.missing_for_story() == ["ready"]

    tracker.move_to(FoundationStage.READY)
    assert tracker.can_begin_story


def test_stage_definitions_are_ordered() -> None:
    definitions = list_stage_definitions()

    assert [item.id for item in definitions] == [
        Stage.GENRE,
        Stage.WORLD,
        Stage.CHARACTERS,
        Stage.INFLUENCES,
        Stage.DETAILS,
        Stage.READY,
    ]


def test_creation_tracker_refuses_early_story() -> None:
    tracker = CreationTracker()

    with pytest.raises(StageNotReadyError) as excinfo:
        tracker.begin_story()

    assert excinfo.value.missing == ["genre", "world", "characters", "ready"]


def test_creation_tracker_finalizes_story_inputs() -> None:
    tracker = CreationTracker()

    assert tracker.record_reply(Stage.GENRE, GENRE_SUMMARY, thread_id="thread_g", summary={"mainGenre": "Fantasy"})
    assert tracker.record_reply(
        Stage.WORLD,
        "I've created a world called Aster.",
        summary={"name": "Aster", "keyConflicts": ["The drowning of the isles"]},
    )
    tracker.add_character(MARA)
    tracker.add_inspiration("Earthsea")
    tracker.add_inspiration("Earthsea")
    tracker.select_stage(Stage.READY)

    world, characters = tracker.begin_story()

    assert tracker.conversation(Stage.GENRE).thread_id == "thread_g"
    assert tracker.inspirations == ["Earthsea"]
    assert world.name == "Aster"
    assert world.genre == "Fantasy"
    assert world.key_conflicts == ["The drowning of the isles"]
    assert world.complexity == 3
    assert [character.name for character in characters] == ["Mara"]
    assert characters[0].depth == 5
    assert characters[0].role == "Unknown role"


def test_stage_statuses_describe_every_stage() -> None:
    tracker = CreationTracker()
    tracker.add_inspiration("Dune")

    statuses = tracker.stage_statuses()

    assert set(statuses) == {"genre", "world", "characters", "influences", "details"}
    assert statuses["influences"].is_complete
    assert statuses["influences"].details == ["Dune"]
    assert not statuses["genre"].is_complete


def test_malformed_world_summary_keeps_last_good_world() -> None:
    tracker = CreationTracker()
    tracker.record_reply(Stage.WORLD, "Tell me more.", summary={"name": "Aster"})

    completed = tracker.record_reply(
        Stage.WORLD,
        "I've created a world called Aster.",
        summary={"name": "Aster II", "regions": "The Shallows"},
    )

    assert completed
    assert tracker.world.name == "Aster"
    assert tracker.conversation(Stage.WORLD).summary == {"name": "Aster II", "regions": "The Shallows"}
