"""Domain errors raised by the StoryFlow tracker and session helpers."""

from __future__ import annotations


class StoryFlowError(Exception):
    """Base class for StoryFlow errors."""


class StageNotReadyError(StoryFlowError):
    """Raised when an action needs stages that are not complete yet."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Complete these stages first: {', '.join(missing)}")


class AssistantUnavailableError(StoryFlowError):
    """Raised by message handlers when the upstream assistant cannot answer."""
