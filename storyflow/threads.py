"""Keep each conversation pointed at its latest upstream thread."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

import httpx

from .exceptions import StoryFlowError

logger = logging.getLogger(__name__)

FOUNDATION_CONVERSATION = "foundation"

PersistFn = Callable[[str, str], Awaitable[None]]


class ThreadBinding:
    """Map conversation keys (``genre``, ``world``, ``character`` or ``foundation``) to thread ids.

    A response carrying a different id overwrites the stored one, last write
    wins, and the new id is handed to *persist*. A failed persist is logged
    and the in-memory id is kept so the next successful write reconciles it.
    """

    def __init__(self, persist: Optional[PersistFn] = None) -> None:
        self._persist = persist
        self._threads: Dict[str, str] = {}

    def get(self, conversation: str = FOUNDATION_CONVERSATION) -> str | None:
        """Return the id every outgoing request for *conversation* must carry."""

        return self._threads.get(conversation)

    def seed(self, conversation: str, thread_id: str | None) -> None:
        """Load a previously persisted id without persisting it again."""

        if thread_id:
            self._threads[conversation] = thread_id

    async def bind(self, conversation: str, thread_id: str | None) -> bool:
        """Record *thread_id* from an upstream response; returns True when it changed."""

        if not thread_id or self._threads.get(conversation) == thread_id:
            return False
        previous = self._threads.get(conversation)
        self._threads[conversation] = thread_id
        logger.info("Thread for %s changed %s -> %s", conversation, previous, thread_id)

        if self._persist is not None:
            try:
                await self._persist(conversation, thread_id)
            except (httpx.HTTPError, StoryFlowError) as exc:
                logger.warning("Could not persist thread %s for %s: %s", thread_id, conversation, exc)
        return True

    def snapshot(self) -> Dict[str, str]:
        return dict(self._threads)
