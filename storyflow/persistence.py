"""Best-effort durable storage of chat turns with backoff and a retry queue."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, List, Optional, Set

import httpx

from .config import get_settings
from .schemas import MessageRole

logger = logging.getLogger(__name__)

PENDING_WARNING = "Some messages haven't been saved yet. We'll keep retrying in the background."

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class PendingMessage:
    foundation_id: int
    role: MessageRole
    content: str
    client_message_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_payload(self) -> dict:
        return {
            "role": self.role.value,
            "content": self.content,
            "clientMessageId": self.client_message_id,
        }


class MessagePersister:
    """Save chat turns through the messages endpoint.

    A failing save is retried with ``base_delay * 2**attempt`` between
    attempts, up to ``max_retries`` retries. A message that still fails is
    queued once; a single background task then retries the oldest queued
    message every ``retry_interval`` seconds until the queue is empty.
    Every message carries a ``client_message_id`` so a resend after a lost
    response is stored only once.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        retry_interval: Optional[float] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self._client = client
        self.max_retries = settings.save_max_retries if max_retries is None else max_retries
        self.base_delay = settings.save_base_delay if base_delay is None else base_delay
        self.retry_interval = settings.save_retry_interval if retry_interval is None else retry_interval
        self._sleep = sleep
        self._pending: Deque[PendingMessage] = deque()
        self._retry_task: asyncio.Task | None = None
        self._inflight: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "MessagePersister":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def pending(self) -> List[PendingMessage]:
        return list(self._pending)

    @property
    def warning(self) -> str | None:
        """Banner text shown while queued messages are waiting."""

        return PENDING_WARNING if self._pending else None

    @property
    def retry_loop_running(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    async def _deliver(self, message: PendingMessage) -> None:
        response = await self._client.post(
            f"/api/foundations/{message.foundation_id}/messages",
            json=message.to_payload(),
        )
        response.raise_for_status()

    async def save_message(
        self,
        foundation_id: int,
        role: MessageRole,
        content: str,
        *,
        client_message_id: str | None = None,
    ) -> bool:
        """Store one chat turn; returns False when it ended up in the retry queue."""

        message = PendingMessage(foundation_id, role, content)
        if client_message_id:
            message = PendingMessage(foundation_id, role, content, client_message_id)

        for attempt in range(self.max_retries + 1):
            try:
                await self._deliver(message)
                return True
            except httpx.HTTPError as exc:
                logger.warning(
                    "Saving %s message for foundation %s failed (attempt %d): %s",
                    role.value,
                    foundation_id,
                    attempt + 1,
                    exc,
                )
            if attempt < self.max_retries:
                await self._sleep(self.base_delay * 2**attempt)

        self._enqueue(message)
        return False

    def submit(self, foundation_id: int, role: MessageRole, content: str) -> asyncio.Task:
        """Schedule a save without waiting for it."""

        task = asyncio.create_task(self.save_message(foundation_id, role, content))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    def _enqueue(self, message: PendingMessage) -> None:
        self._pending.append(message)
        logger.error(
            "Message %s queued for background retry (%d pending)",
            message.client_message_id,
            len(self._pending),
        )
        if not self.retry_loop_running:
            self._retry_task = asyncio.create_task(self._retry_pending())

    async def _retry_pending(self) -> None:
        while self._pending:
            await self._sleep(self.retry_interval)
            if not self._pending:
                break
            message = self._pending[0]
            try:
                await self._deliver(message)
            except httpx.HTTPError as exc:
                logger.warning("Background retry of %s failed: %s", message.client_message_id, exc)
                continue
            self._pending.popleft()
            logger.info("Saved queued message %s (%d left)", message.client_message_id, len(self._pending))

    async def wait_idle(self) -> None:
        """Wait for every submitted save to finish or be queued."""

        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def wait_drained(self) -> None:
        """Wait until the retry queue is empty."""

        await self.wait_idle()
        if self._retry_task is not None:
            await self._retry_task

    async def aclose(self) -> None:
        """Finish submitted saves and stop the background retry task."""

        await self.wait_idle()
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
            try:
                await self._retry_task
            except asyncio.CancelledError:
                pass
        self._retry_task = None
        if self._pending:
            logger.warning("Closing with %d unsaved messages", len(self._pending))
