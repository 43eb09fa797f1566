"""Pydantic models and enums for the StoryFlow API."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Serialize with camelCase keys to match the frontend interfaces."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Stage(str, Enum):
    """Stages of the standalone guided creation interview."""

    GENRE = "genre"
    WORLD = "world"
    CHARACTERS = "characters"
    INFLUENCES = "influences"
    DETAILS = "details"
    READY = "ready"

    @property
    def order(self) -> int:
        """Return a human-friendly order index for the stage."""
        stage_order = {
            Stage.GENRE: 1,
            Stage.WORLD: 2,
            Stage.CHARACTERS: 3,
            Stage.INFLUENCES: 4,
            Stage.DETAILS: 5,
            Stage.READY: 6,
        }
        return stage_order[self]

    def following(self) -> "Stage":
        """Return the next stage in the linear order; ``ready`` maps to itself."""
        ordered = sorted(Stage, key=lambda stage: stage.order)
        index = ordered.index(self)
        return ordered[min(index + 1, len(ordered) - 1)]


class FoundationStage(str, Enum):
    """Stages of the foundation builder, each backed by its own assistant."""

    GENRE = "genre"
    ENVIRONMENT = "environment"
    WORLD = "world"
    CHARACTER = "character"
    READY = "ready"

    @property
    def order(self) -> int:
        stage_order = {
            FoundationStage.GENRE: 1,
            FoundationStage.ENVIRONMENT: 2,
            FoundationStage.WORLD: 3,
            FoundationStage.CHARACTER: 4,
            FoundationStage.READY: 5,
        }
        return stage_order[self]

    def following(self) -> "FoundationStage":
        ordered = sorted(FoundationStage, key=lambda stage: stage.order)
        index = ordered.index(self)
        return ordered[min(index + 1, len(ordered) - 1)]


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# ---------------------------------------------------------------------------
# Foundations and their conversation
# ---------------------------------------------------------------------------


class Foundation(CamelModel):
    """Top-level container for one story world's creation session."""

    id: int
    user_id: int = 1
    name: str
    description: str = ""
    genre: str = ""
    thread_id: Optional[str] = None
    current_stage: FoundationStage = FoundationStage.GENRE
    genre_completed: bool = False
    environment_completed: bool = False
    world_completed: bool = False
    character_completed: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def completion_flags(self) -> Dict[str, bool]:
        return {
            FoundationStage.GENRE.value: self.genre_completed,
            FoundationStage.ENVIRONMENT.value: self.environment_completed,
            FoundationStage.WORLD.value: self.world_completed,
            FoundationStage.CHARACTER.value: self.character_completed,
        }


class FoundationCreate(CamelModel):
    name: Optional[str] = None


class FoundationUpdate(CamelModel):
    """Partial update; omitted fields are left untouched."""

    name: Optional[str] = None
    description: Optional[str] = None
    genre: Optional[str] = None
    thread_id: Optional[str] = None
    current_stage: Optional[FoundationStage] = None
    genre_completed: Optional[bool] = None
    environment_completed: Optional[bool] = None
    world_completed: Optional[bool] = None
    character_completed: Optional[bool] = None


class FoundationRename(CamelModel):
    name: str = Field(..., min_length=1)


class NameSuggestionRequest(CamelModel):
    genre_summary: Optional[str] = None
    main_genre: Optional[str] = None


class NameSuggestionResponse(CamelModel):
    suggested_names: List[str]


class FoundationMessage(CamelModel):
    id: int
    foundation_id: int
    role: MessageRole
    content: str
    client_message_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class MessageCreate(CamelModel):
    role: MessageRole
    content: str = Field(..., min_length=1)
    client_message_id: Optional[str] = Field(
        default=None,
        description="Client-generated idempotency key; a key is stored once per foundation.",
    )


class ConversationTurn(CamelModel):
    role: MessageRole
    content: str


class ConversationState(CamelModel):
    """Conversation with one stage assistant."""

    messages: List[ConversationTurn] = Field(default_factory=list)
    is_complete: bool = False
    summary: Optional[Dict[str, Any]] = None
    thread_id: Optional[str] = None


class StageStatus(CamelModel):
    is_complete: bool = False
    details: Optional[Any] = None
    conversation: Optional[ConversationState] = None


class StageDefinition(CamelModel):
    """Expose metadata that describes a stage to the UI."""

    id: Stage
    label: str
    description: str


# ---------------------------------------------------------------------------
# Detail records
# ---------------------------------------------------------------------------


class GenreDetails(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    foundation_id: Optional[int] = None
    name: Optional[str] = None
    main_genre: Optional[str] = None
    description: Optional[str] = None
    themes: List[str] = Field(default_factory=list)
    tropes: List[str] = Field(default_factory=list)
    mood: Optional[str] = None
    target_audience: Optional[str] = None
    inspirations: List[str] = Field(default_factory=list)


class EnvironmentDetails(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    foundation_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    location_type: Optional[str] = None
    atmosphere: Optional[str] = None
    sensory_details: List[str] = Field(default_factory=list)
    notable_features: List[str] = Field(default_factory=list)


class WorldDetails(CamelModel):
    """A world as it is being built; every field is optional."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    foundation_id: Optional[int] = None
    name: Optional[str] = None
    genre: Optional[str] = None
    setting: Optional[str] = None
    timeframe: Optional[str] = None
    regions: Optional[List[str]] = None
    key_conflicts: Optional[List[str]] = None
    important_figures: Optional[List[str]] = None
    cultural_setting: Optional[str] = None
    technology: Optional[str] = None
    magic_system: Optional[str] = None
    political_system: Optional[str] = None
    description: Optional[str] = None
    complexity: Optional[int] = None


class WorldData(CamelModel):
    """A finalized world handed to the story experience."""

    name: str
    genre: str
    setting: str
    timeframe: str
    regions: List[str]
    key_conflicts: List[str]
    important_figures: List[str]
    cultural_setting: str
    technology: str
    magic_system: Optional[str] = None
    political_system: str
    description: str
    complexity: int


class CharacterCreate(CamelModel):
    name: str = Field(..., min_length=1)
    role: Optional[str] = None
    background: Optional[str] = None
    personality: List[str] = Field(default_factory=list)
    goals: List[str] = Field(default_factory=list)
    fears: List[str] = Field(default_factory=list)
    relationships: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    appearance: Optional[str] = None
    voice: Optional[str] = None
    secrets: Optional[str] = None
    thread_id: Optional[str] = None


class CharacterUpdate(CamelModel):
    name: Optional[str] = None
    role: Optional[str] = None
    background: Optional[str] = None
    personality: Optional[List[str]] = None
    goals: Optional[List[str]] = None
    fears: Optional[List[str]] = None
    relationships: Optional[List[str]] = None
    skills: Optional[List[str]] = None
    appearance: Optional[str] = None
    voice: Optional[str] = None
    secrets: Optional[str] = None
    thread_id: Optional[str] = None


class CharacterRecordCreate(CharacterCreate):
    """Character body for ``POST /api/characters``, which names its foundation."""

    foundation_id: int


class Character(CharacterCreate):
    id: int
    foundation_id: int
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CharacterData(CamelModel):
    """A finalized character handed to the story experience."""

    id: Optional[int] = None
    name: str
    role: str
    background: str
    personality: List[str]
    goals: List[str]
    fears: List[str]
    relationships: List[str]
    skills: List[str]
    appearance: str
    voice: str
    depth: int


# ---------------------------------------------------------------------------
# Stories and chapters
# ---------------------------------------------------------------------------


class StoryCreate(CamelModel):
    title: str = Field(..., min_length=1)
    foundation_id: Optional[int] = None
    synopsis: Optional[str] = None
    genre: Optional[str] = None
    theme: Optional[str] = None
    setting: Optional[str] = None
    creation_progress: Optional[str] = Field(
        default=None,
        description="JSON-serialized WorldData captured when the story was started.",
    )
    status: str = "draft"


class StoryUpdate(CamelModel):
    title: Optional[str] = None
    synopsis: Optional[str] = None
    genre: Optional[str] = None
    theme: Optional[str] = None
    setting: Optional[str] = None
    creation_progress: Optional[str] = None
    status: Optional[str] = None


class Story(StoryCreate):
    id: int
    user_id: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ChapterCreate(CamelModel):
    story_id: int
    title: str = Field(..., min_length=1)
    content: str = ""
    order: int = 1


class ChapterUpdate(CamelModel):
    title: Optional[str] = None
    content: Optional[str] = None
    order: Optional[int] = None


class Chapter(ChapterCreate):
    id: int
    word_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class VersionType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    AI_ASSISTED = "ai-assisted"


class VersionCreate(CamelModel):
    """A snapshot of a chapter's text; omitted word counts are computed."""

    chapter_id: int
    content: str
    word_count: Optional[int] = Field(default=None, ge=0)
    type: VersionType


class Version(CamelModel):
    id: int
    chapter_id: int
    content: str
    word_count: int = 0
    type: VersionType
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Assistant, suggestions and settings payloads
# ---------------------------------------------------------------------------


class DynamicAssistantRequest(CamelModel):
    message: str = Field(..., min_length=1)
    current_assistant_type: Optional[FoundationStage] = None
    thread_id: Optional[str] = None


class DynamicAssistantResponse(CamelModel):
    success: bool = True
    foundation_id: int
    thread_id: str
    context_type: FoundationStage
    content: str
    is_auto_transition: bool = False
    stage_completed: bool = False
    current_stage: FoundationStage
    flags: Dict[str, bool] = Field(default_factory=dict)
    previous_context_type: Optional[FoundationStage] = None


class SuggestionRequest(CamelModel):
    user_message: Optional[str] = None
    assistant_reply: Optional[str] = None
    foundation_id: Optional[int] = None
    stage: Optional[str] = None


class SuggestionResponse(CamelModel):
    suggestions: List[str]


class ApiKeyRequest(CamelModel):
    api_key: str = Field(..., min_length=1)
    provider: str = "openai"


class ApiKeyStatus(CamelModel):
    provider: str
    configured: bool
    source: Optional[str] = None
