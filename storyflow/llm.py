"""OpenAI-backed assistants for the foundation interview and suggestion chips."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from textwrap import dedent
from typing import Any, Dict, List, Sequence

from openai import APIError, OpenAI

from .config import get_settings
from .memory import store
from .schemas import FoundationStage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptSpec:
    """Container describing how to call the LLM for one turn."""

    system_prompt: str
    messages: Sequence[Dict[str, str]]
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 900


ClientCache = tuple[str, OpenAI]
_client_cache: ClientCache | None = None


def resolve_api_key() -> str | None:
    """Return the OpenAI key, preferring one set at runtime over the environment."""

    return store.get_api_key("openai") or get_settings().openai_api_key


def _get_client() -> OpenAI | None:
    """Return a cached OpenAI client when an API key is configured."""

    global _client_cache
    api_key = resolve_api_key()
    if not api_key:
        return None
    if _client_cache and _client_cache[0] == api_key:
        return _client_cache[1]
    client = OpenAI(api_key=api_key)
    _client_cache = (api_key, client)
    return client


def _parse_structured_response(raw_text: str) -> Any | None:
    """Attempt to coerce the model output into JSON."""

    text = raw_text.strip()
    if text.startswith("```"):
        lines = [line.rstrip() for line in text.splitlines()]
        if len(lines) >= 2:
            lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            text = "\n".join(lines).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _invoke(client: OpenAI, spec: PromptSpec) -> str | None:
    try:
        response = client.chat.completions.create(
            model=spec.model,
            messages=[
                {"role": "system", "content": spec.system_prompt.strip()},
                *spec.messages,
            ],
            temperature=spec.temperature,
            max_tokens=spec.max_tokens,
        )
    except APIError as exc:
        logger.error("OpenAI request failed: %s", exc)
        return None

    message = response.choices[0].message.content if response.choices else None
    return message or None


_SUMMARY_RULE = dedent(
    """
    Ask one focused question at a time. When you have enough detail, reply with
    a short summary that starts with "I've created a" followed by a JSON block
    describing the result.
    """
)

ASSISTANT_INSTRUCTIONS: Dict[FoundationStage, str] = {
    FoundationStage.GENRE: dedent(
        """
        You are a genre creator helping a writer pin down the genre of a story world.
        Explore themes, tropes, mood, target audience and inspirations.
        The final JSON block uses the keys: name, mainGenre, description, themes,
        tropes, mood, targetAudience, inspirations.
        """
    )
    + _SUMMARY_RULE,
    FoundationStage.ENVIRONMENT: dedent(
        """
        You are an environment generator designing specific locations inside a story world:
        cities, taverns, forests, ships. Focus on atmosphere and sensory detail.
        The final JSON block uses the keys: name, description, locationType,
        atmosphere, sensoryDetails, notableFeatures.
        """
    )
    + _SUMMARY_RULE,
    FoundationStage.WORLD: dedent(
        """
        You are a world builder shaping geography, history, politics, culture,
        technology and any magic system of a story world.
        The final JSON block uses the keys: name, setting, timeframe, regions,
        keyConflicts, importantFigures, culturalSetting, technology, magicSystem,
        politicalSystem, description.
        """
    )
    + _SUMMARY_RULE,
    FoundationStage.CHARACTER: dedent(
        """
        You are a hyper-realistic character creator. Build believable people with
        a role, background, personality, goals, fears, relationships, skills,
        appearance and voice.
        The final JSON block uses the keys: name, role, background, personality,
        goals, fears, relationships, skills, appearance, voice.
        """
    )
    + _SUMMARY_RULE,
}


def converse(
    context: FoundationStage,
    history: Sequence[Dict[str, str]],
    message: str,
    *,
    foundation_context: str | None = None,
) -> str | None:
    """Continue a stage conversation; returns None when no reply is available."""

    client = _get_client()
    if client is None:
        return None

    instructions = ASSISTANT_INSTRUCTIONS.get(context, ASSISTANT_INSTRUCTIONS[FoundationStage.GENRE])
    if foundation_context:
        instructions = f"{instructions}\nWhat the writer has settled on so far:\n{foundation_context}"
    spec = PromptSpec(
        system_prompt=instructions,
        messages=[*history, {"role": "user", "content": message}],
        model=get_settings().openai_model,
    )
    return _invoke(client, spec)


def generate_chat_suggestions(user_message: str, assistant_reply: str) -> List[str] | None:
    """Ask the model for short replies the user could click."""

    client = _get_client()
    if client is None:
        return None

    conversation = json.dumps({"user": user_message, "chat assistant": assistant_reply}, indent=2)
    spec = PromptSpec(
        system_prompt=dedent(
            """
            You suggest short replies a writer could send next in a story-creation chat.
            Offer the concrete choices the assistant asked about, each under eight words.
            If the assistant asks which genre to explore, answer with single-word genres.
            Respond only with JSON: {"options": [string], "additional_option": string}
            """
        ),
        messages=[{"role": "user", "content": conversation}],
        model=get_settings().openai_model,
        temperature=0.6,
        max_tokens=300,
    )
    raw = _invoke(client, spec)
    if not raw:
        return None

    data = _parse_structured_response(raw)
    suggestions: List[str] = []
    if isinstance(data, dict) and isinstance(data.get("options"), list):
        suggestions = [item for item in data["options"] if isinstance(item, str)]
        extra = data.get("additional_option")
        if isinstance(extra, str) and extra:
            suggestions.append(extra)
    elif isinstance(data, list):
        suggestions = [item for item in data if isinstance(item, str)]

    if not suggestions:
        logger.warning("Suggestion response had no usable options")
        return None
    return suggestions


def generate_name_suggestions(main_genre: str, genre_summary: str) -> List[str] | None:
    """Ask the model for names a writer could give their story foundation."""

    client = _get_client()
    if client is None:
        return None

    spec = PromptSpec(
        system_prompt=dedent(
            """
            You name story worlds. Given a genre and its summary, propose three
            evocative names for the story foundation, each under six words.
            Respond only with JSON: {"names": [string]}
            """
        ),
        messages=[{"role": "user", "content": f"Genre: {main_genre}\n\n{genre_summary}"}],
        model=get_settings().openai_model,
        temperature=0.9,
        max_tokens=200,
    )
    raw = _invoke(client, spec)
    if not raw:
        return None

    data = _parse_structured_response(raw)
    if isinstance(data, dict):
        data = data.get("names")
    if not isinstance(data, list):
        logger.warning("Name suggestion response had no list of names")
        return None
    names = [item.strip() for item in data if isinstance(item, str) and item.strip()]
    return names or None
