import pytest

from storyflow import llm
from storyflow.config import get_settings
from storyflow.memory import store


@pytest.fixture(autouse=True)
def clean_state(monkeypatch: pytest.MonkeyPatch):
    """Start every test with an empty store and no provider keys."""

    for key in ("OPENAI_API_KEY", "ELEVENLABS_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    store.reset()
    monkeypatch.setattr(llm, "_client_cache", None)
    yield
    get_settings.cache_clear()
