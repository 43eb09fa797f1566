"""Foundation endpoints: CRUD, transcript, dynamic assistant and detail records."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, Response, status
from pydantic import ValidationError

from ..interview import run_dynamic_assistant
from ..memory import DETAIL_MODELS, store
from ..naming import NameSuggestionService
from ..schemas import (
    Character,
    CharacterCreate,
    DynamicAssistantRequest,
    DynamicAssistantResponse,
    Foundation,
    FoundationCreate,
    FoundationMessage,
    FoundationRename,
    FoundationUpdate,
    MessageCreate,
    NameSuggestionRequest,
    NameSuggestionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/foundations", tags=["foundations"])


class DetailKind(str, Enum):
    GENRE = "genre"
    WORLD = "world"
    ENVIRONMENT = "environment"


def _get_or_404(foundation_id: int) -> Foundation:
    foundation = store.get_foundation(foundation_id)
    if foundation is None:
        raise HTTPException(status_code=404, detail=f"Foundation {foundation_id} not found.")
    return foundation


@router.get("", response_model=list[Foundation])
async def list_foundations() -> list[Foundation]:
    return store.list_foundations()


@router.post("", response_model=Foundation, status_code=status.HTTP_201_CREATED)
async def create_foundation(payload: FoundationCreate | None = None) -> Foundation:
    foundation = store.create_foundation(payload.name if payload else None)
    logger.info("Created foundation %s", foundation.id)
    return foundation


@router.get("/{foundation_id}", response_model=Foundation)
async def get_foundation(foundation_id: int) -> Foundation:
    return _get_or_404(foundation_id)


@router.put("/{foundation_id}", response_model=Foundation)
async def update_foundation(foundation_id: int, payload: FoundationUpdate) -> Foundation:
    _get_or_404(foundation_id)
    return store.update_foundation(foundation_id, payload)


@router.delete("/{foundation_id}")
async def delete_foundation(foundation_id: int, force: bool = False) -> dict[str, Any]:
    """Delete a foundation; stories built on it block the delete unless ``force`` is set."""

    _get_or_404(foundation_id)
    dependent = store.stories_by_foundation(foundation_id)
    if dependent and not force:
        raise HTTPException(
            status_code=409,
            detail={
                "message": "Foundation has dependent stories. Pass force=true to delete them too.",
                "storyCount": len(dependent),
            },
        )
    store.delete_foundation(foundation_id, force=force)
    logger.info("Deleted foundation %s (force=%s)", foundation_id, force)
    return {"success": True, "deletedStories": len(dependent) if force else 0}


@router.post("/{foundation_id}/rename", response_model=Foundation)
async def rename_foundation(foundation_id: int, payload: FoundationRename) -> Foundation:
    _get_or_404(foundation_id)
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name must not be blank")
    logger.info("Renaming foundation %s to %r", foundation_id, name)
    return store.update_foundation(foundation_id, FoundationUpdate(name=name))


@router.post("/{foundation_id}/name-suggestions", response_model=NameSuggestionResponse)
def name_suggestions(foundation_id: int, payload: NameSuggestionRequest | None = None) -> NameSuggestionResponse:
    """Suggest foundation names from a genre summary, or from the stored genre details."""

    foundation = _get_or_404(foundation_id)
    payload = payload or NameSuggestionRequest()
    genre_summary = payload.genre_summary
    if not genre_summary:
        details = store.get_details("genre", foundation_id)
        genre_summary = details.model_dump_json(by_alias=True, exclude_none=True) if details else ""
    main_genre = payload.main_genre or foundation.genre or None
    names = NameSuggestionService().suggest(main_genre, genre_summary)
    return NameSuggestionResponse(suggested_names=names)


# -- transcript ----------------------------------------------------------------


@router.get("/{foundation_id}/messages", response_model=list[FoundationMessage])
async def list_messages(foundation_id: int) -> list[FoundationMessage]:
    _get_or_404(foundation_id)
    return store.list_messages(foundation_id)


@router.post("/{foundation_id}/messages", response_model=FoundationMessage, status_code=status.HTTP_201_CREATED)
async def add_message(foundation_id: int, payload: MessageCreate, response: Response) -> FoundationMessage:
    """Append a chat turn; a repeated ``clientMessageId`` returns the stored message."""

    _get_or_404(foundation_id)
    message, created = store.add_message(foundation_id, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
    return message


@router.post("/{foundation_id}/dynamic-assistant", response_model=DynamicAssistantResponse)
def dynamic_assistant(foundation_id: int, payload: DynamicAssistantRequest) -> DynamicAssistantResponse:
    foundation = _get_or_404(foundation_id)
    return run_dynamic_assistant(foundation, payload)


# -- characters ------------------------------------------------------------------


@router.get("/{foundation_id}/characters", response_model=list[Character])
async def list_characters(foundation_id: int) -> list[Character]:
    _get_or_404(foundation_id)
    return store.list_characters(foundation_id)


@router.post("/{foundation_id}/characters", response_model=Character, status_code=status.HTTP_201_CREATED)
async def create_character(foundation_id: int, payload: CharacterCreate) -> Character:
    _get_or_404(foundation_id)
    return store.create_character(foundation_id, payload)


# -- genre / world / environment details --------------------------------------------


@router.get("/{foundation_id}/{kind}")
async def get_details(foundation_id: int, kind: DetailKind) -> Dict[str, Any]:
    _get_or_404(foundation_id)
    details = store.get_details(kind.value, foundation_id)
    if details is None:
        raise HTTPException(status_code=404, detail=f"No {kind.value} details for foundation {foundation_id}.")
    return details.model_dump(by_alias=True, mode="json")


@router.put("/{foundation_id}/{kind}")
async def save_details(
    foundation_id: int,
    kind: DetailKind,
    payload: Dict[str, Any] = Body(...),
) -> Dict[str, Any]:
    _get_or_404(foundation_id)
    try:
        details = DETAIL_MODELS[kind.value].model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc
    stored = store.save_details(kind.value, foundation_id, details)
    return stored.model_dump(by_alias=True, mode="json")
