"""Server side of the dynamic foundation assistant.

Each turn picks the assistant context, continues the foundation's thread,
asks the model (or the offline interviewer when no key is configured) and
folds a completed summary back into the foundation record.
"""

from __future__ import annotations

import json
import logging
import re
from collections import Counter
from typing import Any, Callable, Dict, List, Sequence

from pydantic import BaseModel, ValidationError

from .llm import converse
from .memory import store
from .schemas import (
    CharacterCreate,
    DynamicAssistantRequest,
    DynamicAssistantResponse,
    EnvironmentDetails,
    Foundation,
    FoundationStage,
    FoundationUpdate,
    GenreDetails,
    MessageRole,
    WorldDetails,
)
from .tracker import COMPLETION_CHECKS, FoundationTracker, extract_json_block, extract_main_genre
from .transitions import resolve_assistant_context

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Text utilities
# ---------------------------------------------------------------------------

STOP_WORDS = {
    "and",
    "the",
    "for",
    "with",
    "that",
    "this",
    "from",
    "into",
    "your",
    "their",
    "about",
    "love",
    "like",
    "want",
    "would",
    "story",
    "stories",
    "world",
    "character",
    "genre",
    "some",
    "something",
    "really",
    "there",
    "where",
    "should",
    "have",
}

GENRE_NAMES = (
    "science fiction",
    "sci-fi",
    "fantasy",
    "mystery",
    "horror",
    "romance",
    "thriller",
    "historical",
    "adventure",
    "dystopian",
    "steampunk",
    "cyberpunk",
    "western",
    "noir",
)

MOODS = {
    "dark": "Dark and brooding",
    "hope": "Hopeful and adventurous",
    "myster": "Mysterious and tense",
    "light": "Lighthearted",
    "funny": "Lighthearted",
}


def _extract_keywords(*texts: str, max_terms: int = 5) -> List[str]:
    """Extract the top keywords from the provided text fragments."""

    joined = " ".join(part for part in texts if part)
    words = re.findall(r"[a-zA-Z][a-zA-Z0-9-]+", joined.lower())
    counts: Counter[str] = Counter(word for word in words if word not in STOP_WORDS and len(word) > 3)
    most_common = [word for word, _ in counts.most_common(max_terms)]
    if not most_common:
        most_common = ["wonder", "journey", "discovery"]
    return most_common


def _titleize(word: str) -> str:
    return word.replace("-", " ").title()


def _guess_genre(text: str) -> str:
    lowered = text.lower()
    for name in GENRE_NAMES:
        if name in lowered:
            return "Science Fiction" if name == "sci-fi" else name.title()
    return "Speculative Fiction"


def _guess_mood(text: str) -> str:
    lowered = text.lower()
    for stem, mood in MOODS.items():
        if stem in lowered:
            return mood
    return "Adventurous with moments of wonder"


def _json_block(data: Dict[str, Any]) -> str:
    return "```json\n" + json.dumps(data, indent=2) + "\n```"


# ---------------------------------------------------------------------------
# Offline interviewer
# ---------------------------------------------------------------------------

CLARIFYING_QUESTIONS: Dict[FoundationStage, str] = {
    FoundationStage.GENRE: (
        "That gives me a good starting point. What mood should your story carry: "
        "dark and brooding, hopeful and adventurous, or mysterious and tense?"
    ),
    FoundationStage.ENVIRONMENT: (
        "Let's picture a specific place in your world. Where should we start: "
        "a bustling city, a remote village, or an ancient ruin?"
    ),
    FoundationStage.WORLD: (
        "Let's shape the wider world. What should define it most: "
        "its politics, its history, or its magic and technology?"
    ),
    FoundationStage.CHARACTER: (
        "Who is this character at heart? Are they a hero, a rival, or a mentor?"
    ),
}


def _user_texts(history: Sequence[Dict[str, str]], message: str) -> List[str]:
    return [turn["content"] for turn in history if turn.get("role") == MessageRole.USER.value] + [message]


def _genre_summary(texts: List[str]) -> str:
    joined = " ".join(texts)
    keywords = _extract_keywords(*texts)
    main_genre = _guess_genre(joined)
    themes = [_titleize(word) for word in keywords[:3]]
    data = {
        "name": f"{_titleize(keywords[0])} {main_genre}",
        "mainGenre": main_genre,
        "description": f"A {main_genre.lower()} story shaped by {', '.join(themes).lower()}.",
        "themes": themes,
        "tropes": [f"The quest for {keywords[0]}", "An unlikely alliance"],
        "mood": _guess_mood(joined),
        "targetAudience": "Adult",
        "inspirations": [],
    }
    return (
        f"I've created a {main_genre.lower()} genre profile for your story world, "
        f"built around {', '.join(themes).lower()}.\n\n{_json_block(data)}"
    )


def _environment_summary(texts: List[str]) -> str:
    keywords = _extract_keywords(*texts)
    name = f"The {_titleize(keywords[0])} Quarter"
    data = {
        "name": name,
        "description": f"A place where {', '.join(keywords[:3])} meet.",
        "locationType": "District",
        "atmosphere": _guess_mood(" ".join(texts)),
        "sensoryDetails": [f"The smell of {keywords[-1]}", "Distant bells at dusk"],
        "notableFeatures": [_titleize(word) for word in keywords[:2]],
    }
    return f"I've created an environment called {name}.\n\n{_json_block(data)}"


def _world_summary(texts: List[str]) -> str:
    keywords = _extract_keywords(*texts)
    name = f"{_titleize(keywords[0])} Realm"
    data = {
        "name": name,
        "setting": f"A land defined by {keywords[0]}",
        "timeframe": "An age of change",
        "regions": [f"{_titleize(word)} Reach" for word in keywords[:3]],
        "keyConflicts": [f"The struggle over {keywords[0]}"],
        "importantFigures": ["The Regent"],
        "culturalSetting": f"Traditions rooted in {keywords[-1]}",
        "technology": "Pre-industrial",
        "politicalSystem": "Feudal council",
        "description": f"{name} is a world of {', '.join(keywords[:3])}.",
    }
    return f"I've created a world called {name}.\n\n{_json_block(data)}"


def _character_summary(texts: List[str]) -> str:
    keywords = _extract_keywords(*texts)
    name = _titleize(keywords[0])
    data = {
        "name": name,
        "role": "Protagonist",
        "background": f"{name} grew up surrounded by {', '.join(keywords[:3])} and never forgot it.",
        "personality": ["Determined", "Curious"],
        "goals": [f"Protect what remains of {keywords[-1]}"],
        "fears": ["Being forgotten"],
        "relationships": [],
        "skills": [_titleize(word) for word in keywords[1:3]],
        "appearance": "Weathered and watchful",
        "voice": "Quiet and measured",
    }
    return f"I've created a character named {name}.\n\n{_json_block(data)}"


OFFLINE_SUMMARIES: Dict[FoundationStage, Callable[[List[str]], str]] = {
    FoundationStage.GENRE: _genre_summary,
    FoundationStage.ENVIRONMENT: _environment_summary,
    FoundationStage.WORLD: _world_summary,
    FoundationStage.CHARACTER: _character_summary,
}


def offline_reply(context: FoundationStage, history: Sequence[Dict[str, str]], message: str) -> str:
    """Answer without a model: ask one clarifying question, then summarize."""

    question = CLARIFYING_QUESTIONS[context]
    asked = any(turn.get("role") == MessageRole.ASSISTANT.value and turn.get("content") == question for turn in history)
    if not asked:
        return question
    return OFFLINE_SUMMARIES[context](_user_texts(history, message))


# ---------------------------------------------------------------------------
# Dynamic assistant turn
# ---------------------------------------------------------------------------

_DETAIL_MODELS: Dict[FoundationStage, type[BaseModel]] = {
    FoundationStage.GENRE: GenreDetails,
    FoundationStage.ENVIRONMENT: EnvironmentDetails,
    FoundationStage.WORLD: WorldDetails,
}


def _foundation_context(foundation: Foundation) -> str | None:
    parts = []
    if foundation.genre:
        parts.append(f"Genre: {foundation.genre}")
    if foundation.description:
        parts.append(f"World: {foundation.description}")
    return "\n".join(parts) or None


def _store_summary(foundation: Foundation, context: FoundationStage, content: str, update: Dict[str, Any]) -> None:
    data = extract_json_block(content)
    if context is FoundationStage.GENRE:
        genre = extract_main_genre(content)
        if genre:
            update["genre"] = genre
    if not data:
        return
    try:
        if context is FoundationStage.CHARACTER:
            store.create_character(foundation.id, CharacterCreate.model_validate(data))
            return
        details = _DETAIL_MODELS[context].model_validate(data)
    except ValidationError as exc:
        logger.warning("Could not store %s summary for foundation %s: %s", context.value, foundation.id, exc)
        return
    store.save_details(context.value, foundation.id, details)
    if context is FoundationStage.WORLD and data.get("description"):
        update["description"] = data["description"]


def run_dynamic_assistant(foundation: Foundation, request: DynamicAssistantRequest) -> DynamicAssistantResponse:
    """Run one dynamic-assistant turn for *foundation*."""

    current = request.current_assistant_type or foundation.current_stage
    decision = resolve_assistant_context(
        request.message,
        current,
        genre_completed=foundation.genre_completed,
    )
    context = decision.context

    thread_id, history = store.open_thread(request.thread_id or foundation.thread_id)
    content = converse(context, history, request.message, foundation_context=_foundation_context(foundation))
    if content is None:
        content = offline_reply(context, history, request.message)
    store.append_to_thread(thread_id, MessageRole.USER, request.message)
    store.append_to_thread(thread_id, MessageRole.ASSISTANT, content)

    tracker = FoundationTracker.from_foundation(foundation)
    if decision.is_auto_transition:
        tracker.apply_server_transition(context, is_auto_transition=True)

    update: Dict[str, Any] = {"thread_id": thread_id}
    stage_completed = COMPLETION_CHECKS[context](content)
    if stage_completed:
        tracker.mark_complete(context)
        if tracker.stage is context:
            tracker.advance()
        _store_summary(foundation, context, content, update)

    flags = tracker.flags
    update.update(
        current_stage=tracker.stage,
        genre_completed=flags[FoundationStage.GENRE.value],
        environment_completed=flags[FoundationStage.ENVIRONMENT.value],
        world_completed=flags[FoundationStage.WORLD.value],
        character_completed=flags[FoundationStage.CHARACTER.value],
    )
    store.update_foundation(foundation.id, FoundationUpdate(**update))
    logger.info(
        "Foundation %s turn in %s context (auto=%s, completed=%s, stage=%s)",
        foundation.id,
        context.value,
        decision.is_auto_transition,
        stage_completed,
        tracker.stage.value,
    )

    return DynamicAssistantResponse(
        foundation_id=foundation.id,
        thread_id=thread_id,
        context_type=context,
        content=content,
        is_auto_transition=decision.is_auto_transition,
        stage_completed=stage_completed,
        current_stage=tracker.stage,
        flags=flags,
        previous_context_type=current if decision.is_auto_transition else None,
    )
