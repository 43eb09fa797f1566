"""Configuration helpers for the StoryFlow backend."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Mapping, Tuple

from dotenv import load_dotenv

PROVIDER_PREFIX = "STORYFLOW_"
PROVIDER_SUFFIX = "_API_KEY"

DEFAULT_ALLOWED_ORIGINS: Tuple[str, ...] = (
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

load_dotenv(override=False)


@dataclass(frozen=True)
class Settings:
    """Settings container for API keys, service endpoints and retry tuning.

    OpenAI backs both the interview assistants and TTS; ElevenLabs is an
    optional alternative voice provider.
    """

    openai_api_key: str | None = None
    elevenlabs_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    api_base_url: str = "http://localhost:5000"
    allowed_origins: Tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    log_level: str = "INFO"
    save_max_retries: int = 3
    save_base_delay: float = 1.0
    save_retry_interval: float = 5.0
    # Additional providers discovered from environment variables.
    additional_api_keys: Dict[str, str] = field(default_factory=dict)

    def get_api_key(self, provider: str = "openai") -> str | None:
        """Return the API key configured for *provider*."""

        if provider == "openai":
            return self.openai_api_key
        if provider == "elevenlabs":
            return self.elevenlabs_api_key
        return self.additional_api_keys.get(provider)


def _extract_additional_api_keys(environ: Mapping[str, str]) -> Dict[str, str]:
    """Collect provider keys having the ``STORYFLOW_*_API_KEY`` pattern."""

    discovered: Dict[str, str] = {}
    for env_key, value in environ.items():
        if not env_key.startswith(PROVIDER_PREFIX) or not env_key.endswith(PROVIDER_SUFFIX):
            continue

        provider = env_key[len(PROVIDER_PREFIX) : -len(PROVIDER_SUFFIX)].lower()
        if not provider or provider in {"openai", "elevenlabs"}:
            continue
        if value:
            discovered[provider] = value
    return discovered


def _split_origins(raw: str | None) -> Tuple[str, ...]:
    if not raw:
        return DEFAULT_ALLOWED_ORIGINS
    origins = tuple(origin.strip() for origin in raw.split(",") if origin.strip())
    return origins or DEFAULT_ALLOWED_ORIGINS


def _int_env(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-integer %s=%r", key, raw)
        return default


def _float_env(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-numeric %s=%r", key, raw)
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read environment variables and return cached settings."""

    environ = os.environ
    return Settings(
        openai_api_key=environ.get("OPENAI_API_KEY"),
        elevenlabs_api_key=environ.get("ELEVENLABS_API_KEY"),
        openai_model=environ.get("STORYFLOW_OPENAI_MODEL", "gpt-4o-mini"),
        api_base_url=environ.get("STORYFLOW_API_BASE_URL", "http://localhost:5000"),
        allowed_origins=_split_origins(environ.get("STORYFLOW_ALLOWED_ORIGINS")),
        log_level=environ.get("STORYFLOW_LOG_LEVEL", "INFO").upper(),
        save_max_retries=_int_env(environ, "STORYFLOW_SAVE_MAX_RETRIES", 3),
        save_base_delay=_float_env(environ, "STORYFLOW_SAVE_BASE_DELAY", 1.0),
        save_retry_interval=_float_env(environ, "STORYFLOW_SAVE_RETRY_INTERVAL", 5.0),
        additional_api_keys=_extract_additional_api_keys(environ),
    )


def configure_logging(level: str | None = None) -> None:
    """Attach a stream handler to the ``storyflow`` logger once."""

    logger = logging.getLogger("storyflow")
    logger.setLevel(level or get_settings().log_level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
