"""Reply suggestion chips derived from the latest exchange."""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

import httpx

from .llm import generate_chat_suggestions
from .schemas import FoundationStage, Stage

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 4
MAX_OPTION_LENGTH = 60
MAX_OPTION_WORDS = 6

INTERROGATIVE_MARKERS: Tuple[str, ...] = (
    "would you",
    "do you prefer",
    "do you want",
    "do you have",
    "what kind",
    "what type",
    "which",
    "how about",
    "should",
)

WELCOME_MARKERS: Tuple[str, ...] = (
    "Welcome to Foundation Builder",
    "What type of genre would you like to explore",
)

STAGE_DEFAULTS: Dict[Stage, Tuple[str, ...]] = {
    Stage.GENRE: (
        "I enjoy epic fantasy stories",
        "I'd like a science fiction setting",
        "I prefer mystery and suspense",
        "Can we create a romantic story?",
    ),
    Stage.WORLD: (
        "A medieval kingdom with castles and forests",
        "A futuristic space colony on a distant planet",
        "A modern city with hidden supernatural elements",
        "A mysterious island with ancient secrets",
    ),
    Stage.CHARACTERS: (
        "A hero with a mysterious past",
        "Someone discovering special abilities",
        "A reluctant leader forced into action",
        "A character seeking redemption",
    ),
    Stage.INFLUENCES: (
        "I love the style of Harry Potter",
        "Game of Thrones has amazing character work",
        "The storytelling in The Last of Us",
        "The world-building of Star Wars",
    ),
    Stage.DETAILS: (
        "I'd like to explore themes of friendship",
        "Can we add some political intrigue?",
        "I want moral dilemmas as a central theme",
        "I'd like humor to balance the serious parts",
    ),
    Stage.READY: (
        "Yes, I'm ready to start my story!",
        "Let's review what we've created first",
        "Can we make some final adjustments?",
        "How will the interactive parts work?",
    ),
}

# Checked in order; the first topic whose keywords appear in the reply wins.
TOPIC_SUGGESTIONS: Tuple[Tuple[str, Tuple[str, ...], Tuple[str, ...]], ...] = (
    (
        "genre",
        ("genre",),
        ("Fantasy", "Science fiction", "Mystery", "Romance"),
    ),
    (
        "protagonist",
        ("protagonist", "main character", "hero"),
        (
            "An unlikely hero from humble beginnings",
            "A skilled outcast seeking redemption",
            "A reluctant leader with a hidden gift",
            "Someone torn between two loyalties",
        ),
    ),
    (
        "magic",
        ("magic", "spell", "supernatural"),
        (
            "Magic is rare and comes at a cost",
            "Everyone has a small magical talent",
            "Magic is fading from the world",
            "No magic, just ancient technology",
        ),
    ),
    (
        "conflict",
        ("conflict", "villain", "antagonist", "struggle"),
        (
            "A war between rival kingdoms",
            "A hidden enemy within",
            "A struggle against nature",
            "A personal quest for revenge",
        ),
    ),
    (
        "setting",
        ("setting", "world", "place", "environment"),
        (
            "A sprawling city of towers",
            "A remote frontier village",
            "An ancient forest full of ruins",
            "A ship drifting between stars",
        ),
    ),
    (
        "tone",
        ("tone", "mood", "atmosphere"),
        (
            "Dark and brooding",
            "Hopeful and adventurous",
            "Mysterious and tense",
            "Lighthearted with some humor",
        ),
    ),
)

_QUOTED = re.compile(r"[\"“]([^\"“”]{2,60})[\"”]")
_QUESTION = re.compile(r"[^.?!\n]*\?")
_CHOICE_LEAD = re.compile(r"\b(?:prefer|like|rather|want|choose|between)\b\s*", re.IGNORECASE)
_OPTION_SPLIT = re.compile(r",\s*(?:or\s+)?|\s+or\s+", re.IGNORECASE)

_FOUNDATION_TO_STAGE: Dict[FoundationStage, Stage] = {
    FoundationStage.GENRE: Stage.GENRE,
    FoundationStage.ENVIRONMENT: Stage.WORLD,
    FoundationStage.WORLD: Stage.WORLD,
    FoundationStage.CHARACTER: Stage.CHARACTERS,
    FoundationStage.READY: Stage.READY,
}


def _resolve_stage(stage: Stage | FoundationStage | str | None) -> Stage | None:
    if stage is None or isinstance(stage, Stage):
        return stage
    if isinstance(stage, FoundationStage):
        return _FOUNDATION_TO_STAGE[stage]
    try:
        return Stage(stage)
    except ValueError:
        pass
    try:
        return _FOUNDATION_TO_STAGE[FoundationStage(stage)]
    except ValueError:
        return None


def is_welcome_message(assistant_reply: str | None) -> bool:
    return bool(assistant_reply) and any(marker in assistant_reply for marker in WELCOME_MARKERS)


def is_question(text: str) -> bool:
    lowered = text.lower()
    return "?" in lowered or any(marker in lowered for marker in INTERROGATIVE_MARKERS)


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    unique = []
    for item in items:
        key = item.lower()
        if key not in seen:
            seen.add(key)
            unique.append(item)
    return unique


def _clean_option(raw: str) -> str:
    option = raw.strip().strip(".!?;:'\"").strip()
    return option[:1].upper() + option[1:] if option else option


def _split_options(question: str) -> List[str]:
    body = question.strip().rstrip("?").strip()
    if ":" in body:
        body = body.split(":", 1)[1]
    else:
        lead = _CHOICE_LEAD.search(body)
        if lead:
            body = body[lead.end():]
    options = [_clean_option(part) for part in _OPTION_SPLIT.split(body)]
    return [
        option
        for option in options
        if option and len(option) <= MAX_OPTION_LENGTH and len(option.split()) <= MAX_OPTION_WORDS
    ]


def extract_choices(text: str) -> List[str]:
    """Pull the literal options offered in a question, if any."""

    quoted = _dedupe([item.strip() for item in _QUOTED.findall(text) if item.strip()])
    if len(quoted) >= 2:
        return quoted[:MAX_SUGGESTIONS]

    for question in reversed(_QUESTION.findall(text)):
        if " or " not in question.lower():
            continue
        options = _dedupe(_split_options(question))
        if len(options) >= 2:
            return options[:MAX_SUGGESTIONS]
    return []


def heuristic_suggestions(
    assistant_reply: str | None,
    stage: Stage | FoundationStage | str | None = None,
) -> List[str]:
    """Derive up to four chips from the assistant's text alone."""

    text = assistant_reply or ""
    if text and is_question(text):
        choices = extract_choices(text)
        if choices:
            return choices

    lowered = text.lower()
    for _topic, keywords, options in TOPIC_SUGGESTIONS:
        if any(keyword in lowered for keyword in keywords):
            return list(options)[:MAX_SUGGESTIONS]

    resolved = _resolve_stage(stage)
    if resolved is None:
        return []
    return list(STAGE_DEFAULTS[resolved])[:MAX_SUGGESTIONS]


GenerateFn = Callable[[str, str], Optional[List[str]]]


class SuggestionService:
    """Server-side suggestions: ask the LLM first, fall back to the heuristic."""

    def __init__(self, generate: GenerateFn | None = None) -> None:
        self._generate = generate or generate_chat_suggestions

    def suggest(
        self,
        user_message: str,
        assistant_reply: str,
        stage: Stage | FoundationStage | str | None = None,
    ) -> List[str]:
        suggestions = self._generate(user_message, assistant_reply) or []
        suggestions = [item.strip() for item in suggestions if isinstance(item, str) and item.strip()]
        if suggestions:
            return suggestions[:MAX_SUGGESTIONS]
        logger.info("No model suggestions, using heuristic chips")
        return heuristic_suggestions(assistant_reply, stage)


class ApiSuggester:
    """Client-side suggestions through ``/api/ai/chat-suggestions``.

    Any failure degrades silently to the heuristic chips.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def suggest(
        self,
        user_message: str,
        assistant_reply: str,
        *,
        foundation_id: int | None = None,
        stage: Stage | FoundationStage | str | None = None,
    ) -> List[str]:
        payload = {
            "userMessage": user_message,
            "assistantReply": assistant_reply,
            "foundationId": foundation_id,
        }
        resolved = _resolve_stage(stage)
        if resolved is not None:
            payload["stage"] = resolved.value
        try:
            response = await self._client.post("/api/ai/chat-suggestions", json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Suggestion request failed: %s", exc)
            return heuristic_suggestions(assistant_reply, stage)

        suggestions = data.get("suggestions") if isinstance(data, dict) else None
        if not isinstance(suggestions, list):
            logger.warning("Suggestion response had no list of suggestions")
            suggestions = []
        cleaned = [item for item in suggestions if isinstance(item, str) and item.strip()]
        return cleaned[:MAX_SUGGESTIONS] or heuristic_suggestions(assistant_reply, stage)
