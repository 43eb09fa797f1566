from __future__ import annotations

from types import SimpleNamespace

import httpx
from openai import APIError

from storyflow import llm
from storyflow.memory import store
from storyflow.schemas import FoundationStage


class FakeCompletions:
    def __init__(self, content: str | None = None, error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.calls: list[dict] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _install(monkeypatch, completions: FakeCompletions) -> None:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    monkeypatch.setattr(llm, "_get_client", lambda: client)


def test_runtime_key_wins_over_environment(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    assert llm.resolve_api_key() == "sk-env"

    store.set_api_key("openai", "sk-runtime")
    assert llm.resolve_api_key() == "sk-runtime"


def test_client_is_cached_per_key() -> None:
    assert llm._get_client() is None

    store.set_api_key("openai", "sk-one")
    first = llm._get_client()
    assert llm._get_client() is first

    store.set_api_key("openai", "sk-two")
    assert llm._get_client() is not first


def test_parse_fenced_json() -> None:
    assert llm._parse_structured_response('```json\n{"options": ["A"]}\n```') == {"options": ["A"]}
    assert llm._parse_structured_response("not json") is None


def test_converse_without_key_returns_none() -> None:
    assert llm.converse(FoundationStage.GENRE, [], "hello") is None


def test_converse_sends_history_and_context(monkeypatch) -> None:
    completions = FakeCompletions("What mood should it carry?")
    _install(monkeypatch, completions)
    history = [{"role": "user", "content": "Fantasy"}, {"role": "assistant", "content": "Tell me more."}]

    reply = llm.converse(FoundationStage.WORLD, history, "Floating isles", foundation_context="Genre: Fantasy")

    assert reply == "What mood should it carry?"
    call = completions.calls[0]
    assert call["messages"][0]["role"] == "system"
    assert "world builder" in call["messages"][0]["content"]
    assert "Genre: Fantasy" in call["messages"][0]["content"]
    assert call["messages"][1:] == [*history, {"role": "user", "content": "Floating isles"}]


def test_api_error_yields_none(monkeypatch) -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    _install(monkeypatch, FakeCompletions(error=APIError("rate limited", request, body=None)))

    assert llm.converse(FoundationStage.GENRE, [], "hello") is None
    assert llm.generate_chat_suggestions("hi", "Which genre?") is None


def test_suggestions_include_additional_option(monkeypatch) -> None:
    _install(
        monkeypatch,
        FakeCompletions('{"options": ["Fantasy", "Horror"], "additional_option": "Something else"}'),
    )

    assert llm.generate_chat_suggestions("hi", "Which genre?") == ["Fantasy", "Horror", "Something else"]


def test_suggestions_accept_bare_list(monkeypatch) -> None:
    _install(monkeypatch, FakeCompletions('["Yes", "No", 3]'))

    assert llm.generate_chat_suggestions("hi", "Ready?") == ["Yes", "No"]


def test_unusable_suggestions_yield_none(monkeypatch) -> None:
    _install(monkeypatch, FakeCompletions('{"options": []}'))

    assert llm.generate_chat_suggestions("hi", "Ready?") is None


def test_name_suggestions_from_model(monkeypatch) -> None:
    completions = FakeCompletions('```json\n{"names": ["Tidefall", " ", "Salt Crown"]}\n```')
    _install(monkeypatch, completions)

    names = llm.generate_name_suggestions("Fantasy", "I've created a fantasy genre profile.")

    assert names == ["Tidefall", "Salt Crown"]
    assert "Genre: Fantasy" in completions.calls[0]["messages"][1]["content"]


def test_name_suggestions_need_a_list(monkeypatch) -> None:
    _install(monkeypatch, FakeCompletions('{"names": "Tidefall"}'))

    assert llm.generate_name_suggestions("Fantasy", "") is None
