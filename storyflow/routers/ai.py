"""AI helper endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from ..memory import store
from ..schemas import SuggestionRequest, SuggestionResponse
from ..suggestions import SuggestionService, is_welcome_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/chat-suggestions", response_model=SuggestionResponse)
def chat_suggestions(payload: SuggestionRequest) -> SuggestionResponse:
    """Suggest short replies for the latest exchange.

    The user message may be empty only when the assistant reply is the
    foundation welcome message.
    """

    if not payload.assistant_reply:
        raise HTTPException(status_code=400, detail="Missing assistant reply")
    if not payload.user_message and not is_welcome_message(payload.assistant_reply):
        raise HTTPException(status_code=400, detail="Missing user message")

    stage = payload.stage
    if stage is None and payload.foundation_id is not None:
        foundation = store.get_foundation(payload.foundation_id)
        stage = foundation.current_stage if foundation else None

    suggestions = SuggestionService().suggest(payload.user_message or "", payload.assistant_reply, stage)
    logger.debug("Returning %d suggestions", len(suggestions))
    return SuggestionResponse(suggestions=suggestions)
