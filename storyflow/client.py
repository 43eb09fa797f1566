"""Async HTTP client for the StoryFlow API."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx
from pydantic import BaseModel

from .config import get_settings
from .schemas import (
    Character,
    CharacterCreate,
    DynamicAssistantRequest,
    DynamicAssistantResponse,
    Foundation,
    FoundationMessage,
    FoundationStage,
    FoundationUpdate,
    NameSuggestionRequest,
    NameSuggestionResponse,
    Story,
    StoryCreate,
)

logger = logging.getLogger(__name__)


def _body(model: BaseModel) -> dict:
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")


class StoryFlowClient:
    """Thin wrapper over ``httpx.AsyncClient`` that speaks the ``/api`` routes.

    Pass *client* to share a transport (tests use ``httpx.ASGITransport``);
    otherwise one is created against ``STORYFLOW_API_BASE_URL``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ) -> None:
        self._owns_client = client is None
        self.http = client or httpx.AsyncClient(
            base_url=base_url or get_settings().api_base_url,
            timeout=timeout,
        )

    async def __aenter__(self) -> "StoryFlowClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self.http.request(method, path, **kwargs)
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    # -- foundations -------------------------------------------------------

    async def list_foundations(self) -> List[Foundation]:
        data = await self._request("GET", "/api/foundations")
        return [Foundation.model_validate(item) for item in data]

    async def create_foundation(self, name: str | None = None) -> Foundation:
        payload = {"name": name} if name else {}
        return Foundation.model_validate(await self._request("POST", "/api/foundations", json=payload))

    async def get_foundation(self, foundation_id: int) -> Foundation:
        return Foundation.model_validate(await self._request("GET", f"/api/foundations/{foundation_id}"))

    async def update_foundation(self, foundation_id: int, **changes: Any) -> Foundation:
        body = _body(FoundationUpdate(**changes))
        data = await self._request("PUT", f"/api/foundations/{foundation_id}", json=body)
        return Foundation.model_validate(data)

    async def delete_foundation(self, foundation_id: int, *, force: bool = False) -> None:
        params = {"force": "true"} if force else None
        await self._request("DELETE", f"/api/foundations/{foundation_id}", params=params)

    async def rename_foundation(self, foundation_id: int, name: str) -> Foundation:
        data = await self._request("POST", f"/api/foundations/{foundation_id}/rename", json={"name": name})
        return Foundation.model_validate(data)

    async def suggest_names(
        self,
        foundation_id: int,
        *,
        genre_summary: str | None = None,
        main_genre: str | None = None,
    ) -> List[str]:
        body = _body(NameSuggestionRequest(genre_summary=genre_summary, main_genre=main_genre))
        data = await self._request("POST", f"/api/foundations/{foundation_id}/name-suggestions", json=body)
        return NameSuggestionResponse.model_validate(data).suggested_names

    async def list_messages(self, foundation_id: int) -> List[FoundationMessage]:
        data = await self._request("GET", f"/api/foundations/{foundation_id}/messages")
        return [FoundationMessage.model_validate(item) for item in data]

    async def dynamic_assistant(
        self,
        foundation_id: int,
        message: str,
        *,
        thread_id: str | None = None,
        current_assistant_type: FoundationStage | None = None,
    ) -> DynamicAssistantResponse:
        request = DynamicAssistantRequest(
            message=message,
            thread_id=thread_id,
            current_assistant_type=current_assistant_type,
        )
        data = await self._request(
            "POST",
            f"/api/foundations/{foundation_id}/dynamic-assistant",
            json=_body(request),
        )
        return DynamicAssistantResponse.model_validate(data)

    # -- characters and stories ------------------------------------------------

    async def list_characters(self, foundation_id: int) -> List[Character]:
        data = await self._request("GET", f"/api/foundations/{foundation_id}/characters")
        return [Character.model_validate(item) for item in data]

    async def create_character(self, foundation_id: int, character: CharacterCreate) -> Character:
        data = await self._request(
            "POST",
            f"/api/foundations/{foundation_id}/characters",
            json=_body(character),
        )
        return Character.model_validate(data)

    async def create_story(self, story: StoryCreate) -> Story:
        return Story.model_validate(await self._request("POST", "/api/stories", json=_body(story)))

    # -- settings ----------------------------------------------------------

    async def set_api_key(self, api_key: str, provider: str = "openai") -> None:
        await self._request("POST", "/api/settings/api-key", json={"apiKey": api_key, "provider": provider})
        logger.info("Stored %s API key on the server", provider)
