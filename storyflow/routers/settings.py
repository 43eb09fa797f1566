"""Runtime API key settings."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from ..config import get_settings
from ..memory import store
from ..schemas import ApiKeyRequest, ApiKeyStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])


def _status(provider: str) -> ApiKeyStatus:
    if store.get_api_key(provider):
        return ApiKeyStatus(provider=provider, configured=True, source="runtime")
    if get_settings().get_api_key(provider):
        return ApiKeyStatus(provider=provider, configured=True, source="environment")
    return ApiKeyStatus(provider=provider, configured=False)


@router.get("/api-key", response_model=ApiKeyStatus)
async def get_api_key_status(provider: str = "openai") -> ApiKeyStatus:
    """Report whether a key is configured; the key itself is never returned."""

    return _status(provider.lower())


@router.post("/api-key", response_model=ApiKeyStatus)
async def set_api_key(payload: ApiKeyRequest) -> ApiKeyStatus:
    provider = payload.provider.lower()
    store.set_api_key(provider, payload.api_key.strip())
    logger.info("Runtime API key set for %s", provider)
    return _status(provider)
