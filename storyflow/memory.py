"""Simple in-memory store for StoryFlow foundations, conversations and stories."""

from __future__ import annotations

import itertools
import logging
import uuid
from collections import defaultdict
from typing import DefaultDict, Dict, List, Tuple

from pydantic import BaseModel

from .schemas import (
    Chapter,
    ChapterCreate,
    ChapterUpdate,
    Character,
    CharacterCreate,
    CharacterUpdate,
    EnvironmentDetails,
    Foundation,
    FoundationMessage,
    FoundationStage,
    FoundationUpdate,
    GenreDetails,
    MessageCreate,
    MessageRole,
    Story,
    StoryCreate,
    StoryUpdate,
    Version,
    VersionCreate,
    WorldDetails,
    utcnow,
)

logger = logging.getLogger(__name__)

DETAIL_MODELS: Dict[str, type[BaseModel]] = {
    "genre": GenreDetails,
    "world": WorldDetails,
    "environment": EnvironmentDetails,
}

COMPLETION_FLAGS = ("genre_completed", "environment_completed", "world_completed", "character_completed")


def _word_count(text: str) -> int:
    return len(text.split())


class StoryFlowMemory:
    """Hold every StoryFlow table in process memory, keyed by integer ids."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._ids: DefaultDict[str, itertools.count] = defaultdict(lambda: itertools.count(1))
        self._foundations: Dict[int, Foundation] = {}
        self._messages: DefaultDict[int, List[FoundationMessage]] = defaultdict(list)
        self._details: DefaultDict[str, Dict[int, BaseModel]] = defaultdict(dict)
        self._characters: Dict[int, Character] = {}
        self._stories: Dict[int, Story] = {}
        self._chapters: Dict[int, Chapter] = {}
        self._versions: Dict[int, Version] = {}
        self._threads: Dict[str, List[Dict[str, str]]] = {}
        self._api_keys: Dict[str, str] = {}

    def _next_id(self, table: str) -> int:
        return next(self._ids[table])

    # -- foundations -------------------------------------------------------

    def list_foundations(self, user_id: int = 1) -> List[Foundation]:
        return [item for item in self._foundations.values() if item.user_id == user_id]

    def get_foundation(self, foundation_id: int) -> Foundation | None:
        return self._foundations.get(foundation_id)

    def create_foundation(self, name: str | None = None, user_id: int = 1) -> Foundation:
        foundation = Foundation(
            id=self._next_id("foundations"),
            user_id=user_id,
            name=name or "New Foundation",
            current_stage=FoundationStage.GENRE,
        )
        self._foundations[foundation.id] = foundation
        return foundation

    def update_foundation(self, foundation_id: int, update: FoundationUpdate) -> Foundation | None:
        foundation = self._foundations.get(foundation_id)
        if foundation is None:
            return None
        changes = update.model_dump(exclude_none=True)
        # Completion flags never go back to False.
        for flag in COMPLETION_FLAGS:
            if getattr(foundation, flag) and changes.get(flag) is False:
                del changes[flag]
        changes["updated_at"] = utcnow()
        foundation = foundation.model_copy(update=changes)
        self._foundations[foundation_id] = foundation
        return foundation

    def delete_foundation(self, foundation_id: int, *, force: bool = False) -> bool:
        """Remove a foundation with its messages, details and characters.

        Stories that reference the foundation are removed only when *force* is set.
        """

        if foundation_id not in self._foundations:
            return False
        if force:
            for story in self.stories_by_foundation(foundation_id):
                self.delete_story(story.id)
        del self._foundations[foundation_id]
        self._messages.pop(foundation_id, None)
        for table in self._details.values():
            table.pop(foundation_id, None)
        for character_id in [c.id for c in self._characters.values() if c.foundation_id == foundation_id]:
            del self._characters[character_id]
        return True

    # -- messages ----------------------------------------------------------

    def list_messages(self, foundation_id: int) -> List[FoundationMessage]:
        return list(self._messages.get(foundation_id, []))

    def add_message(self, foundation_id: int, payload: MessageCreate) -> Tuple[FoundationMessage, bool]:
        """Append a chat turn; returns the stored message and whether it is new."""

        log = self._messages[foundation_id]
        if payload.client_message_id:
            for existing in log:
                if existing.client_message_id == payload.client_message_id:
                    logger.info(
                        "Duplicate message %s for foundation %s ignored",
                        payload.client_message_id,
                        foundation_id,
                    )
                    return existing, False
        message = FoundationMessage(
            id=self._next_id("foundation_messages"),
            foundation_id=foundation_id,
            role=payload.role,
            content=payload.content,
            client_message_id=payload.client_message_id,
        )
        log.append(message)
        return message, True

    # -- assistant threads -------------------------------------------------

    def open_thread(self, thread_id: str | None) -> Tuple[str, List[Dict[str, str]]]:
        """Return ``(thread_id, history)``, starting a new thread for unknown ids."""

        if thread_id and thread_id in self._threads:
            return thread_id, list(self._threads[thread_id])
        new_id = f"thread_{uuid.uuid4().hex[:24]}"
        if thread_id:
            logger.info("Unknown thread %s, starting %s", thread_id, new_id)
        self._threads[new_id] = []
        return new_id, []

    def append_to_thread(self, thread_id: str, role: MessageRole, content: str) -> None:
        self._threads.setdefault(thread_id, []).append({"role": role.value, "content": content})

    # -- genre / world / environment details --------------------------------

    def get_details(self, kind: str, foundation_id: int) -> BaseModel | None:
        return self._details[kind].get(foundation_id)

    def save_details(self, kind: str, foundation_id: int, details: BaseModel) -> BaseModel:
        model = DETAIL_MODELS[kind]
        existing = self._details[kind].get(foundation_id)
        merged = existing.model_dump() if existing else {}
        merged.update(details.model_dump(exclude_unset=True, exclude_none=True))
        merged["foundation_id"] = foundation_id
        stored = model.model_validate(merged)
        self._details[kind][foundation_id] = stored
        return stored

    # -- characters --------------------------------------------------------

    def list_characters(self, foundation_id: int) -> List[Character]:
        return [c for c in self._characters.values() if c.foundation_id == foundation_id]

    def get_character(self, character_id: int) -> Character | None:
        return self._characters.get(character_id)

    def create_character(self, foundation_id: int, payload: CharacterCreate) -> Character:
        character = Character(
            id=self._next_id("characters"),
            foundation_id=foundation_id,
            **payload.model_dump(),
        )
        self._characters[character.id] = character
        return character

    def update_character(self, character_id: int, update: CharacterUpdate) -> Character | None:
        character = self._characters.get(character_id)
        if character is None:
            return None
        changes = update.model_dump(exclude_none=True)
        changes["updated_at"] = utcnow()
        character = character.model_copy(update=changes)
        self._characters[character_id] = character
        return character

    def delete_character(self, character_id: int) -> bool:
        return self._characters.pop(character_id, None) is not None

    # -- stories and chapters ------------------------------------------------

    def list_stories(self, user_id: int = 1) -> List[Story]:
        return [s for s in self._stories.values() if s.user_id == user_id]

    def stories_by_foundation(self, foundation_id: int) -> List[Story]:
        return [s for s in self._stories.values() if s.foundation_id == foundation_id]

    def get_story(self, story_id: int) -> Story | None:
        return self._stories.get(story_id)

    def create_story(self, payload: StoryCreate, user_id: int = 1) -> Story:
        story = Story(id=self._next_id("stories"), user_id=user_id, **payload.model_dump())
        self._stories[story.id] = story
        return story

    def update_story(self, story_id: int, update: StoryUpdate) -> Story | None:
        story = self._stories.get(story_id)
        if story is None:
            return None
        changes = update.model_dump(exclude_none=True)
        changes["updated_at"] = utcnow()
        story = story.model_copy(update=changes)
        self._stories[story_id] = story
        return story

    def delete_story(self, story_id: int) -> bool:
        if self._stories.pop(story_id, None) is None:
            return False
        for chapter_id in [c.id for c in self._chapters.values() if c.story_id == story_id]:
            self.delete_chapter(chapter_id)
        return True

    def list_chapters(self, story_id: int) -> List[Chapter]:
        return sorted(
            (c for c in self._chapters.values() if c.story_id == story_id),
            key=lambda chapter: chapter.order,
        )

    def get_chapter(self, chapter_id: int) -> Chapter | None:
        return self._chapters.get(chapter_id)

    def create_chapter(self, payload: ChapterCreate) -> Chapter:
        chapter = Chapter(
            id=self._next_id("chapters"),
            word_count=_word_count(payload.content),
            **payload.model_dump(),
        )
        self._chapters[chapter.id] = chapter
        return chapter

    def update_chapter(self, chapter_id: int, update: ChapterUpdate) -> Chapter | None:
        chapter = self._chapters.get(chapter_id)
        if chapter is None:
            return None
        changes = update.model_dump(exclude_none=True)
        if "content" in changes:
            changes["word_count"] = _word_count(changes["content"])
        changes["updated_at"] = utcnow()
        chapter = chapter.model_copy(update=changes)
        self._chapters[chapter_id] = chapter
        return chapter

    def delete_chapter(self, chapter_id: int) -> bool:
        if self._chapters.pop(chapter_id, None) is None:
            return False
        for version_id in [v.id for v in self._versions.values() if v.chapter_id == chapter_id]:
            del self._versions[version_id]
        return True

    # -- chapter versions ------------------------------------------------------

    def list_versions(self, chapter_id: int) -> List[Version]:
        """Versions of a chapter, newest first."""

        return sorted(
            (v for v in self._versions.values() if v.chapter_id == chapter_id),
            key=lambda version: (version.created_at, version.id),
            reverse=True,
        )

    def get_version(self, version_id: int) -> Version | None:
        return self._versions.get(version_id)

    def create_version(self, payload: VersionCreate) -> Version:
        word_count = payload.word_count
        if word_count is None:
            word_count = _word_count(payload.content)
        version = Version(
            id=self._next_id("versions"),
            chapter_id=payload.chapter_id,
            content=payload.content,
            word_count=word_count,
            type=payload.type,
        )
        self._versions[version.id] = version
        return version

    # -- runtime API keys ----------------------------------------------------

    def set_api_key(self, provider: str, api_key: str) -> None:
        self._api_keys[provider] = api_key

    def get_api_key(self, provider: str) -> str | None:
        return self._api_keys.get(provider)


store = StoryFlowMemory()
