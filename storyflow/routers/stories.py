"""Story, chapter, version and character endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from ..memory import store
from ..schemas import (
    Chapter,
    ChapterCreate,
    ChapterUpdate,
    Character,
    CharacterCreate,
    CharacterRecordCreate,
    CharacterUpdate,
    Story,
    StoryCreate,
    StoryUpdate,
    Version,
    VersionCreate,
)


router = APIRouter(tags=["stories"])


def _story_or_404(story_id: int) -> Story:
    story = store.get_story(story_id)
    if story is None:
        raise HTTPException(status_code=404, detail=f"Story {story_id} not found.")
    return story


def _chapter_or_404(chapter_id: int) -> Chapter:
    chapter = store.get_chapter(chapter_id)
    if chapter is None:
        raise HTTPException(status_code=404, detail=f"Chapter {chapter_id} not found.")
    return chapter


@router.get("/stories", response_model=list[Story])
async def list_stories() -> list[Story]:
    return store.list_stories()


@router.post("/stories", response_model=Story, status_code=status.HTTP_201_CREATED)
async def create_story(payload: StoryCreate) -> Story:
    if payload.foundation_id is not None and store.get_foundation(payload.foundation_id) is None:
        raise HTTPException(status_code=404, detail=f"Foundation {payload.foundation_id} not found.")
    return store.create_story(payload)


@router.get("/stories/{story_id}", response_model=Story)
async def get_story(story_id: int) -> Story:
    return _story_or_404(story_id)


@router.put("/stories/{story_id}", response_model=Story)
async def update_story(story_id: int, payload: StoryUpdate) -> Story:
    _story_or_404(story_id)
    return store.update_story(story_id, payload)


@router.delete("/stories/{story_id}")
async def delete_story(story_id: int) -> dict[str, bool]:
    _story_or_404(story_id)
    store.delete_story(story_id)
    return {"success": True}


@router.get("/stories/{story_id}/chapters", response_model=list[Chapter])
async def list_chapters(story_id: int) -> list[Chapter]:
    _story_or_404(story_id)
    return store.list_chapters(story_id)


@router.post("/chapters", response_model=Chapter, status_code=status.HTTP_201_CREATED)
async def create_chapter(payload: ChapterCreate) -> Chapter:
    _story_or_404(payload.story_id)
    return store.create_chapter(payload)


@router.get("/chapters/{chapter_id}", response_model=Chapter)
async def get_chapter(chapter_id: int) -> Chapter:
    return _chapter_or_404(chapter_id)


@router.put("/chapters/{chapter_id}", response_model=Chapter)
async def update_chapter(chapter_id: int, payload: ChapterUpdate) -> Chapter:
    chapter = store.update_chapter(chapter_id, payload)
    if chapter is None:
        raise HTTPException(status_code=404, detail=f"Chapter {chapter_id} not found.")
    return chapter


@router.delete("/chapters/{chapter_id}")
async def delete_chapter(chapter_id: int) -> dict[str, bool]:
    if not store.delete_chapter(chapter_id):
        raise HTTPException(status_code=404, detail=f"Chapter {chapter_id} not found.")
    return {"success": True}


@router.get("/characters/{character_id}", response_model=Character)
async def get_character(character_id: int) -> Character:
    character = store.get_character(character_id)
    if character is None:
        raise HTTPException(status_code=404, detail=f"Character {character_id} not found.")
    return character


@router.put("/characters/{character_id}", response_model=Character)
async def update_character(character_id: int, payload: CharacterUpdate) -> Character:
    character = store.update_character(character_id, payload)
    if character is None:
        raise HTTPException(status_code=404, detail=f"Character {character_id} not found.")
    return character


@router.delete("/characters/{character_id}")
async def delete_character(character_id: int) -> dict[str, bool]:
    if not store.delete_character(character_id):
        raise HTTPException(status_code=404, detail=f"Character {character_id} not found.")
    return {"success": True}


@router.post("/characters", response_model=Character, status_code=status.HTTP_201_CREATED)
async def create_character(payload: CharacterRecordCreate) -> Character:
    if store.get_foundation(payload.foundation_id) is None:
        raise HTTPException(status_code=404, detail=f"Foundation {payload.foundation_id} not found.")
    character = CharacterCreate.model_validate(payload.model_dump(exclude={"foundation_id"}))
    return store.create_character(payload.foundation_id, character)


@router.get("/chapters/{chapter_id}/versions", response_model=list[Version])
async def list_versions(chapter_id: int) -> list[Version]:
    """Saved versions of a chapter, newest first."""

    _chapter_or_404(chapter_id)
    return store.list_versions(chapter_id)


@router.post("/versions", response_model=Version, status_code=status.HTTP_201_CREATED)
async def create_version(payload: VersionCreate) -> Version:
    _chapter_or_404(payload.chapter_id)
    return store.create_version(payload)


@router.get("/versions/{version_id}", response_model=Version)
async def get_version(version_id: int) -> Version:
    version = store.get_version(version_id)
    if version is None:
        raise HTTPException(status_code=404, detail=f"Version {version_id} not found.")
    return version
