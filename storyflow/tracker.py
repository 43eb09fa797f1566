"""Stage completion tracking and UI gating for both creation flows."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Tuple

from pydantic import BaseModel, ValidationError

from .exceptions import StageNotReadyError
from .schemas import (
    CharacterData,
    ConversationState,
    ConversationTurn,
    Foundation,
    FoundationStage,
    MessageRole,
    Stage,
    StageDefinition,
    StageStatus,
    WorldData,
    WorldDetails,
)
from .transitions import Command, CommandKind, determine_next_stage

logger = logging.getLogger(__name__)

DEFAULT_WORLD_COMPLEXITY = 3
DEFAULT_CHARACTER_DEPTH = 5
MIN_BACKGROUND_LENGTH = 20

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")
_GENRE_LINE = re.compile(r"Genre:\s*([^\n\.]+)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Completion heuristics
# ---------------------------------------------------------------------------


def extract_json_block(content: str) -> Dict[str, Any] | None:
    """Return the outermost ``{...}`` block of *content* parsed as JSON."""

    match = _JSON_BLOCK.search(content or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_main_genre(content: str) -> str | None:
    data = extract_json_block(content)
    if data:
        genre = data.get("mainGenre") or data.get("main_genre")
        if genre:
            return str(genre)
    match = _GENRE_LINE.search(content or "")
    if match:
        return match.group(1).strip()
    return None


def is_genre_summary_complete(content: str) -> bool:
    data = extract_json_block(content)
    if data and (data.get("mainGenre") or data.get("main_genre")):
        return True
    return any(marker in content for marker in ("I've created a", "I have created", "Here is your genre"))


def is_world_summary_complete(content: str) -> bool:
    return any(marker in content for marker in ("I've created a world", "I have created", "Here is your world"))


def is_environment_summary_complete(content: str) -> bool:
    return any(marker in content for marker in ("I've created", "Here is your environment"))


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def is_character_complete(record: Any) -> bool:
    """A character is complete once it has a name, a real background and some personality."""

    name = _field(record, "name")
    background = _field(record, "background")
    personality = _field(record, "personality")
    if not isinstance(name, str) or not isinstance(background, str):
        return False
    if not isinstance(personality, (list, tuple)):
        return False
    return bool(name.strip()) and len(background) > MIN_BACKGROUND_LENGTH and len(personality) > 0


def is_character_summary_complete(content: str) -> bool:
    data = extract_json_block(content)
    if data is not None:
        return is_character_complete(data)
    return "I've created a character" in content


COMPLETION_CHECKS: Dict[FoundationStage, Callable[[str], bool]] = {
    FoundationStage.GENRE: is_genre_summary_complete,
    FoundationStage.ENVIRONMENT: is_environment_summary_complete,
    FoundationStage.WORLD: is_world_summary_complete,
    FoundationStage.CHARACTER: is_character_summary_complete,
}


# ---------------------------------------------------------------------------
# Finalization for the story experience
# ---------------------------------------------------------------------------


def _as_dict(data: Any) -> Dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def finalize_world(details: WorldDetails | Mapping[str, Any] | None, *, genre: str | None = None) -> WorldData:
    """Fill missing required world fields with defaults."""

    data = _as_dict(details)
    return WorldData(
        name=data.get("name") or "Untitled World",
        genre=data.get("genre") or genre or "",
        setting=data.get("setting") or "",
        timeframe=data.get("timeframe") or "",
        regions=list(data.get("regions") or []),
        key_conflicts=list(data.get("key_conflicts") or []),
        important_figures=list(data.get("important_figures") or []),
        cultural_setting=data.get("cultural_setting") or "",
        technology=data.get("technology") or "",
        magic_system=data.get("magic_system"),
        political_system=data.get("political_system") or "",
        description=data.get("description") or "",
        complexity=data.get("complexity") or DEFAULT_WORLD_COMPLEXITY,
    )


def finalize_character(partial: Any) -> CharacterData:
    """Fill missing required character fields with defaults."""

    data = _as_dict(partial)
    return CharacterData(
        id=data.get("id"),
        name=data.get("name") or "Unnamed Character",
        role=data.get("role") or "Unknown role",
        background=data.get("background") or "",
        personality=list(data.get("personality") or []),
        goals=list(data.get("goals") or []),
        fears=list(data.get("fears") or []),
        relationships=list(data.get("relationships") or []),
        skills=list(data.get("skills") or []),
        appearance=data.get("appearance") or "",
        voice=data.get("voice") or "",
        depth=data.get("depth") or DEFAULT_CHARACTER_DEPTH,
    )


# ---------------------------------------------------------------------------
# Foundation flow
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Notification:
    """A toast shown to the user after a stage change."""

    title: str
    description: str


_STAGE_LABELS: Dict[FoundationStage, str] = {
    FoundationStage.GENRE: "Genre",
    FoundationStage.ENVIRONMENT: "Environment",
    FoundationStage.WORLD: "World",
    FoundationStage.CHARACTER: "Characters",
    FoundationStage.READY: "Ready",
}

STORY_REQUIREMENTS: Tuple[FoundationStage, ...] = (
    FoundationStage.GENRE,
    FoundationStage.WORLD,
    FoundationStage.CHARACTER,
)


class FoundationTracker:
    """Track stage, completion flags and component visibility for one foundation.

    Completion flags only ever go from ``False`` to ``True``.
    """

    def __init__(
        self,
        stage: FoundationStage = FoundationStage.GENRE,
        flags: Mapping[FoundationStage, bool] | None = None,
        *,
        show_foundation_components: bool = False,
    ) -> None:
        self.stage = stage
        self._flags: Dict[FoundationStage, bool] = {
            FoundationStage.GENRE: False,
            FoundationStage.ENVIRONMENT: False,
            FoundationStage.WORLD: False,
            FoundationStage.CHARACTER: False,
        }
        for key, value in (flags or {}).items():
            if value:
                self._flags[key] = True
        self.show_foundation_components = show_foundation_components
        self.notifications: List[Notification] = []

    @classmethod
    def from_foundation(cls, foundation: Foundation) -> "FoundationTracker":
        flags = {FoundationStage(key): value for key, value in foundation.completion_flags().items()}
        return cls(
            foundation.current_stage,
            flags,
            show_foundation_components=any(flags.values()),
        )

    @property
    def flags(self) -> Dict[str, bool]:
        return {stage.value: done for stage, done in self._flags.items()}

    def is_complete(self, stage: FoundationStage) -> bool:
        return self._flags.get(stage, False)

    def mark_complete(self, stage: FoundationStage) -> bool:
        """Set the completion flag for *stage*; returns True when it was newly set."""

        if stage is FoundationStage.READY or self._flags.get(stage):
            return False
        self._flags[stage] = True
        logger.info("Stage %s marked complete", stage.value)
        return True

    def merge_flags(self, flags: Mapping[str, bool]) -> None:
        for key, value in flags.items():
            if value:
                self.mark_complete(FoundationStage(key))

    def move_to(self, stage: FoundationStage, *, reason: str = "") -> bool:
        if stage is self.stage:
            return False
        previous = self.stage
        self.stage = stage
        self.show_foundation_components = True
        label = _STAGE_LABELS[stage]
        description = reason or f"Moved from {_STAGE_LABELS[previous]} to {label}."
        self.notifications.append(Notification(title=f"{label} stage", description=description))
        logger.info("Foundation stage %s -> %s", previous.value, stage.value)
        return True

    def advance(self, *, reason: str = "") -> FoundationStage:
        self.move_to(self.stage.following(), reason=reason)
        return self.stage

    def apply_reply(self, content: str) -> bool:
        """Run the completion heuristic for the current stage against an assistant reply.

        Returns True when the reply completed the stage and the tracker advanced.
        """

        check = COMPLETION_CHECKS.get(self.stage)
        if check is None or not check(content):
            return False
        completed = self.stage
        self.mark_complete(completed)
        self.advance(reason=f"{_STAGE_LABELS[completed]} complete.")
        return True

    def apply_command(self, command: Command) -> bool:
        if command.kind is CommandKind.SHOW_COMPONENTS:
            self.show_foundation_components = True
            return True
        if command.kind is CommandKind.HIDE_COMPONENTS:
            self.show_foundation_components = False
            return True
        if command.kind is CommandKind.MOVE_TO and command.target is not None:
            return self.move_to(command.target)
        if command.kind is CommandKind.NEXT_STAGE:
            before = self.stage
            return self.advance() is not before
        return False

    def apply_server_transition(
        self,
        context_type: FoundationStage,
        *,
        is_auto_transition: bool,
        flags: Mapping[str, bool] | None = None,
        current_stage: FoundationStage | None = None,
    ) -> bool:
        """Adopt the stage reported by the dynamic-assistant endpoint."""

        if flags:
            self.merge_flags(flags)
        target = current_stage or (context_type if is_auto_transition else None)
        if target is None or target.order < self.stage.order:
            return False
        return self.move_to(target, reason="The assistant moved the conversation forward.")

    def missing_for_story(self) -> List[str]:
        missing = [stage.value for stage in STORY_REQUIREMENTS if not self._flags.get(stage)]
        if self.stage is not FoundationStage.READY:
            missing.append(FoundationStage.READY.value)
        return missing

    @property
    def can_begin_story(self) -> bool:
        return not self.missing_for_story()


# ---------------------------------------------------------------------------
# Standalone six-stage creation flow
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageInfo:
    """Sidebar metadata for one interview stage."""

    slug: Stage
    label: str
    description: str


STAGE_REGISTRY: Dict[Stage, StageInfo] = {
    Stage.GENRE: StageInfo(Stage.GENRE, "Genre", "Settle the genre, themes and mood of the story."),
    Stage.WORLD: StageInfo(Stage.WORLD, "World", "Shape the setting, regions and conflicts."),
    Stage.CHARACTERS: StageInfo(Stage.CHARACTERS, "Characters", "Create the people who live in the world."),
    Stage.INFLUENCES: StageInfo(Stage.INFLUENCES, "Influences", "Name the books and films that inspire you."),
    Stage.DETAILS: StageInfo(Stage.DETAILS, "Details", "Add final themes and story elements."),
    Stage.READY: StageInfo(Stage.READY, "Ready", "Everything is in place to begin the story."),
}


def list_stage_definitions() -> List[StageDefinition]:
    """Return UI-friendly descriptors for all stages."""

    return [
        StageDefinition(id=info.slug, label=info.label, description=info.description)
        for info in sorted(STAGE_REGISTRY.values(), key=lambda item: item.slug.order)
    ]


_CONVERSATION_STAGES: Tuple[Stage, ...] = (Stage.GENRE, Stage.WORLD, Stage.CHARACTERS)

_REPLY_CHECKS: Dict[Stage, Callable[[str], bool]] = {
    Stage.GENRE: is_genre_summary_complete,
    Stage.WORLD: is_world_summary_complete,
}


@dataclass
class CreationTracker:
    """Hold interview progress for the guided creation flow."""

    stage: Stage = Stage.GENRE
    conversations: Dict[Stage, ConversationState] = field(
        default_factory=lambda: {stage: ConversationState() for stage in _CONVERSATION_STAGES}
    )
    world: WorldDetails = field(default_factory=WorldDetails)
    characters: List[Dict[str, Any]] = field(default_factory=list)
    inspirations: List[str] = field(default_factory=list)
    genre_name: str | None = None

    def advance_on(self, utterance: str) -> Stage:
        self.stage = Stage(determine_next_stage(self.stage, utterance))
        return self.stage

    def select_stage(self, stage: Stage) -> None:
        """Jump straight to *stage*, as the sidebar does."""

        self.stage = stage

    def conversation(self, stage: Stage) -> ConversationState | None:
        return self.conversations.get(stage)

    def record_user_turn(self, stage: Stage, content: str) -> None:
        conversation = self.conversations.get(stage)
        if conversation is not None:
            conversation.messages.append(ConversationTurn(role=MessageRole.USER, content=content))

    def record_reply(
        self,
        stage: Stage,
        content: str,
        *,
        thread_id: str | None = None,
        summary: Dict[str, Any] | None = None,
    ) -> bool:
        """Store an assistant reply and update the stage's completion; returns completion."""

        conversation = self.conversations.get(stage)
        if conversation is None:
            return False
        conversation.messages.append(ConversationTurn(role=MessageRole.ASSISTANT, content=content))
        if thread_id:
            conversation.thread_id = thread_id
        if summary is not None:
            conversation.summary = summary
            if stage is Stage.WORLD:
                self._merge_world(summary)
            elif stage is Stage.GENRE:
                for key in ("name", "mainGenre"):
                    if isinstance(summary.get(key), str) and summary[key].strip():
                        self.genre_name = summary[key]
                        break
        check = _REPLY_CHECKS.get(stage)
        if check is not None and check(content):
            conversation.is_complete = True
        elif stage is Stage.CHARACTERS and summary is not None and is_character_complete(summary):
            conversation.is_complete = True
        return conversation.is_complete

    def _merge_world(self, summary: Dict[str, Any]) -> None:
        try:
            incoming = WorldDetails.model_validate(summary).model_dump(exclude_none=True)
        except ValidationError as exc:
            # The raw summary stays on the conversation; the world keeps its last good state.
            logger.warning("Ignoring malformed world summary: %s", exc)
            return
        self.world = self.world.model_copy(update=incoming)

    def add_character(self, partial: Mapping[str, Any]) -> None:
        record = dict(partial)
        record.setdefault("depth", DEFAULT_CHARACTER_DEPTH)
        self.characters.append(record)
        if is_character_complete(record):
            self.conversations[Stage.CHARACTERS].is_complete = True

    def add_inspiration(self, inspiration: str) -> None:
        if inspiration and inspiration not in self.inspirations:
            self.inspirations.append(inspiration)

    def is_complete(self, stage: Stage) -> bool:
        if stage in self.conversations:
            return self.conversations[stage].is_complete
        if stage is Stage.INFLUENCES:
            return bool(self.inspirations)
        return self.stage is Stage.READY

    def stage_statuses(self) -> Dict[str, StageStatus]:
        """Describe every stage for the sidebar."""

        details: Dict[Stage, Any] = {
            Stage.GENRE: self.conversations[Stage.GENRE].summary,
            Stage.WORLD: self.world.model_dump(exclude_none=True) or None,
            Stage.CHARACTERS: list(self.characters) or None,
            Stage.INFLUENCES: list(self.inspirations) or None,
            Stage.DETAILS: None,
        }
        return {
            stage.value: StageStatus(
                is_complete=self.is_complete(stage),
                details=value,
                conversation=self.conversations.get(stage),
            )
            for stage, value in details.items()
        }

    def missing_for_story(self) -> List[str]:
        missing = [stage.value for stage in _CONVERSATION_STAGES if not self.is_complete(stage)]
        if self.stage is not Stage.READY:
            missing.append(Stage.READY.value)
        return missing

    @property
    def can_begin_story(self) -> bool:
        return not self.missing_for_story()

    def begin_story(self) -> Tuple[WorldData, List[CharacterData]]:
        """Finalize the world and characters for the story experience."""

        missing = self.missing_for_story()
        if missing:
            raise StageNotReadyError(missing)
        world = finalize_world(self.world, genre=self.genre_name)
        characters = [finalize_character(partial) for partial in self.characters]
        return world, characters
