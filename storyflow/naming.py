"""Foundation name suggestions offered once the genre is settled."""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Sequence

from .llm import generate_name_suggestions
from .tracker import extract_json_block

logger = logging.getLogger(__name__)

MAX_NAMES = 3
KEEP_NAME_OPTION = "Keep the current name"

_SELECTION_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"I (like|choose|prefer|want|pick) (option|number|choice)?\s*\d+",
        r"option\s*\d+",
        r"number\s*\d+",
        r"^\s*\d+\s*$",
        r"the (first|second|third) one",
        r"the \w+ option",
        r"use that name",
        r"rename (it|the foundation)",
        r"sounds good",
        r"(keep|current) name",
        r"don't rename",
        r"don't change",
        r"stay with",
    )
)
_NUMBER = re.compile(r"\d+")
_ORDINALS = {"first": 1, "second": 2, "third": 3}


def _dedupe(names: List[str]) -> List[str]:
    seen = set()
    unique = []
    for name in names:
        if name.lower() not in seen:
            seen.add(name.lower())
            unique.append(name)
    return unique


def heuristic_names(main_genre: str | None, genre_summary: str | None = None) -> List[str]:
    """Build names from the genre profile's own name and themes."""

    data = extract_json_block(genre_summary or "") or {}
    genre = (main_genre or "").strip()
    if not genre and isinstance(data.get("mainGenre"), str):
        genre = data["mainGenre"].strip()
    genre = genre.title() or "Story"

    names: List[str] = []
    if isinstance(data.get("name"), str) and data["name"].strip():
        names.append(data["name"].strip())
    themes = data.get("themes") if isinstance(data.get("themes"), list) else []
    for theme in themes[:2]:
        if isinstance(theme, str) and theme.strip():
            names.append(f"Tales of {theme.strip().title()}")
    names.append(f"Chronicles of the {genre} Realm")
    names.append(f"The {genre} Foundation")
    return _dedupe(names)[:MAX_NAMES]


NameGenerator = Callable[[str, str], Optional[List[str]]]


class NameSuggestionService:
    """Ask the LLM for foundation names, falling back to the heuristic."""

    def __init__(self, generate: NameGenerator | None = None) -> None:
        self._generate = generate or generate_name_suggestions

    def suggest(self, main_genre: str | None, genre_summary: str | None) -> List[str]:
        names = self._generate(main_genre or "", genre_summary or "") or []
        names = _dedupe([item.strip() for item in names if isinstance(item, str) and item.strip()])
        if names:
            return names[:MAX_NAMES]
        logger.info("No model names, using heuristic names")
        return heuristic_names(main_genre, genre_summary)


def name_offer_message(main_genre: str | None, names: Sequence[str], current_name: str) -> str:
    listing = "\n".join(f"{index}. {name}" for index, name in enumerate(names, start=1))
    genre = main_genre or "chosen"
    return (
        f"Based on the {genre} genre, I've generated some possible names for your story foundation. "
        f"Would you like to rename it to any of these?\n\n{listing}\n\n"
        f'Or you can keep the current name "{current_name}". What would you prefer?'
    )


def is_name_selection_response(text: str, names: Sequence[str]) -> bool:
    """True when *text* answers a name offer, by pick or by refusal."""

    lowered = text.lower()
    if any(name.lower() in lowered for name in names):
        return True
    return any(pattern.search(text) for pattern in _SELECTION_PATTERNS)


def parse_name_selection(text: str, names: Sequence[str]) -> str | None:
    """Return the offered name the user picked, or None when they kept theirs."""

    match = _NUMBER.search(text)
    if match:
        index = int(match.group(0))
        return names[index - 1] if 1 <= index <= len(names) else None

    lowered = text.lower()
    for name in names:
        if name.lower() in lowered:
            return name
    for word, index in _ORDINALS.items():
        if f"the {word} one" in lowered and index <= len(names):
            return names[index - 1]
    return None
