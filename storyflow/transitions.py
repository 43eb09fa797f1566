"""Keyword-driven stage transitions and intent classification.

Everything here is pure: functions take the current stage plus the latest
utterance and return a decision without touching storage or the network.
The keyword tables are module constants so the categories stay explicit.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .schemas import FoundationStage, Stage

logger = logging.getLogger(__name__)

STAGE_ORDER: Tuple[Stage, ...] = tuple(sorted(Stage, key=lambda stage: stage.order))

CONTROL_PHRASES: Tuple[str, ...] = ("next stage", "move on", "continue")

# Words that, spoken at a stage, move the interview to the following stage.
STAGE_TRIGGERS: Dict[Stage, Tuple[str, ...]] = {
    Stage.GENRE: ("world", "setting", "place"),
    Stage.WORLD: ("character", "person", "people"),
    Stage.CHARACTERS: ("inspire", "influence", "like"),
    Stage.INFLUENCES: ("detail", "more", "add"),
    Stage.DETAILS: ("start", "begin", "ready"),
    Stage.READY: (),
}


class IntentCategory(str, Enum):
    """What a user utterance asks of the interview."""

    ADVANCE = "advance"
    STAGE_TOPIC = "stage_topic"
    NONE = "none"


@dataclass(frozen=True)
class Intent:
    category: IntentCategory
    phrase: Optional[str] = None


def _coerce_stage(stage: Stage | str) -> Stage | None:
    if isinstance(stage, Stage):
        return stage
    try:
        return Stage(stage)
    except ValueError:
        return None


def classify_intent(stage: Stage | str, utterance: str) -> Intent:
    """Classify *utterance* against the control phrases and the stage's triggers."""

    text = (utterance or "").lower()
    for phrase in CONTROL_PHRASES:
        if phrase in text:
            return Intent(IntentCategory.ADVANCE, phrase)

    resolved = _coerce_stage(stage)
    if resolved is None:
        return Intent(IntentCategory.NONE)
    for keyword in STAGE_TRIGGERS[resolved]:
        if keyword in text:
            return Intent(IntentCategory.STAGE_TOPIC, keyword)
    return Intent(IntentCategory.NONE)


def determine_next_stage(stage: Stage | str, utterance: str) -> Stage | str:
    """Return the stage the interview should be in after *utterance*.

    Control phrases and stage triggers both advance exactly one stage along
    ``STAGE_ORDER``; ``ready`` is terminal. Unrecognised stage names are
    returned unchanged.
    """

    resolved = _coerce_stage(stage)
    if resolved is None:
        logger.debug("Unknown stage %r left unchanged", stage)
        return stage

    intent = classify_intent(resolved, utterance)
    if intent.category is IntentCategory.NONE:
        return resolved
    next_stage = resolved.following()
    if next_stage is not resolved:
        logger.debug("Stage %s -> %s on %r", resolved.value, next_stage.value, intent.phrase)
    return next_stage


# ---------------------------------------------------------------------------
# Explicit foundation commands
# ---------------------------------------------------------------------------


class CommandKind(str, Enum):
    NEXT_STAGE = "next_stage"
    MOVE_TO = "move_to"
    SHOW_COMPONENTS = "show_components"
    HIDE_COMPONENTS = "hide_components"


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    target: Optional[FoundationStage] = None


_SHOW_PATTERN = re.compile(r"\bshow\s+(?:the\s+)?(?:foundation\s+)?components\b")
_HIDE_PATTERN = re.compile(r"\bhide\s+(?:the\s+)?(?:foundation\s+)?components\b")
_MOVE_PATTERN = re.compile(
    r"\b(?:move|go|jump|switch)\s+to\s+(?:the\s+)?(genre|environments?|world|characters?)\b"
)

_STAGE_ALIASES: Dict[str, FoundationStage] = {
    "genre": FoundationStage.GENRE,
    "environment": FoundationStage.ENVIRONMENT,
    "environments": FoundationStage.ENVIRONMENT,
    "world": FoundationStage.WORLD,
    "character": FoundationStage.CHARACTER,
    "characters": FoundationStage.CHARACTER,
}


def parse_command(utterance: str) -> Command | None:
    """Recognise an explicit foundation-flow command, if any."""

    text = (utterance or "").lower()
    if _SHOW_PATTERN.search(text):
        return Command(CommandKind.SHOW_COMPONENTS)
    if _HIDE_PATTERN.search(text):
        return Command(CommandKind.HIDE_COMPONENTS)
    match = _MOVE_PATTERN.search(text)
    if match:
        return Command(CommandKind.MOVE_TO, _STAGE_ALIASES[match.group(1)])
    if "next stage" in text or "move on" in text:
        return Command(CommandKind.NEXT_STAGE)
    return None


# ---------------------------------------------------------------------------
# Assistant context routing
# ---------------------------------------------------------------------------

CONTEXT_KEYWORDS: Dict[FoundationStage, Tuple[str, ...]] = {
    FoundationStage.CHARACTER: (
        "character", "protagonist", "antagonist", "villain", "hero", "heroine",
        "personality", "backstory", "motivation", "goal", "fear", "flaw",
        "trait", "appearance", "skill", "ability", "relationship", "family",
        "friend", "enemy", "ally", "rival", "lover", "spouse", "parent", "child",
        "mentor", "student", "age", "gender", "occupation", "profession",
        "name", "physical", "height", "weight", "hair", "eyes",
    ),
    FoundationStage.WORLD: (
        "world", "geography", "landscape", "kingdom", "empire", "country", "nation",
        "continent", "ocean", "sea", "mountain", "river", "forest", "desert",
        "climate", "weather", "region", "territory", "area", "map", "realm",
        "politics", "government", "ruler", "law", "society", "culture",
        "religion", "economy", "trade", "technology", "history", "civilization",
        "race", "species", "language", "magic", "system", "planet",
    ),
    FoundationStage.ENVIRONMENT: (
        "environment", "setting", "location", "place", "scene", "venue",
        "city", "town", "village", "castle", "palace", "fortress", "temple",
        "tavern", "inn", "house", "mansion", "cave", "dungeon", "forest",
        "building", "street", "alley", "square", "market", "shop", "store",
        "harbor", "port", "dock", "beach", "coast", "bay", "river", "lake",
        "interior", "room", "hall", "chamber", "corridor", "library", "laboratory",
    ),
    FoundationStage.GENRE: (
        "genre", "style", "tone", "theme", "mood", "atmosphere", "trope",
        "fantasy", "sci-fi", "science fiction", "horror", "mystery", "thriller",
        "romance", "historical", "adventure", "drama", "comedy", "tragedy",
        "western", "noir", "dystopian", "utopian", "steampunk", "cyberpunk",
        "supernatural", "paranormal", "fairy tale", "myth", "legend",
        "epic", "saga", "young adult", "children", "adult", "literary",
    ),
}

CONTEXT_PHRASES: Dict[FoundationStage, Tuple[str, ...]] = {
    FoundationStage.CHARACTER: (
        "main character", "character design", "character profile", "character description",
    ),
    FoundationStage.WORLD: ("world building", "build a world", "world design"),
    FoundationStage.ENVIRONMENT: (
        "story setting", "specific location", "environment design",
        "location details", "where the story takes place",
    ),
    FoundationStage.GENRE: ("genre conventions", "genre elements", "genre tropes", "genre themes"),
}

PHRASE_WEIGHT = 3
MIN_CONTEXT_SCORE = 2

GENRE_DONE_CUES: Tuple[str, ...] = (
    "done", "finished", "complete", "sounds good", "thank you", "great",
    "that sounds", "i like that", "perfect", "awesome", "continue", "proceed",
    "next step", "next stage",
)

ENVIRONMENT_REQUEST_CUES: Tuple[str, ...] = (
    "let's create an environment", "create environment", "build environment",
    "design environment", "start with environment",
)

WORLD_REQUEST_CUES: Tuple[str, ...] = (
    "no more environments", "move to world", "go to world", "world building", "world creation",
)


def detect_conversation_context(message: str) -> FoundationStage | None:
    """Guess which assistant a message is aimed at from its vocabulary.

    Ties resolve in the order character, world, environment, genre.
    """

    text = (message or "").lower()
    scores: Dict[FoundationStage, int] = {}
    for context, keywords in CONTEXT_KEYWORDS.items():
        score = sum(1 for keyword in keywords if keyword in text)
        if any(phrase in text for phrase in CONTEXT_PHRASES[context]):
            score += PHRASE_WEIGHT
        scores[context] = score

    best = max(scores.values())
    if best < MIN_CONTEXT_SCORE:
        return None
    for context in CONTEXT_KEYWORDS:
        if scores[context] == best:
            return context
    return None


@dataclass(frozen=True)
class ContextDecision:
    context: FoundationStage
    is_auto_transition: bool = False


def resolve_assistant_context(
    message: str,
    current: FoundationStage | None = None,
    *,
    genre_completed: bool = False,
) -> ContextDecision:
    """Pick the assistant context for a dynamic-assistant turn."""

    text = (message or "").lower()
    if current is FoundationStage.READY:
        current = FoundationStage.CHARACTER

    if current is FoundationStage.GENRE:
        if (
            any(cue in text for cue in GENRE_DONE_CUES)
            or any(cue in text for cue in ENVIRONMENT_REQUEST_CUES)
            or "next" in text
        ):
            logger.info("Genre stage finished, switching to environment")
            return ContextDecision(FoundationStage.ENVIRONMENT, is_auto_transition=True)
    elif current is FoundationStage.ENVIRONMENT:
        if any(cue in text for cue in WORLD_REQUEST_CUES):
            logger.info("Environment stage finished, switching to world building")
            return ContextDecision(FoundationStage.WORLD, is_auto_transition=True)

    context = detect_conversation_context(text) or current or FoundationStage.GENRE
    if genre_completed and context is FoundationStage.GENRE:
        context = current if current not in (None, FoundationStage.GENRE) else FoundationStage.ENVIRONMENT
    return ContextDecision(context)
