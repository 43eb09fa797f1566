"""Chat sessions that drive the guided creation interview.

One ``ChatSession`` base is shared by the standalone six-stage creation flow
and the foundation builder. Optional behaviour (speaking replies, saving the
transcript) is switched on through ``Capabilities`` rather than separate
session classes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import httpx

from .client import StoryFlowClient
from .exceptions import AssistantUnavailableError, StoryFlowError
from .naming import KEEP_NAME_OPTION, is_name_selection_response, name_offer_message, parse_name_selection
from .persistence import MessagePersister
from .schemas import DynamicAssistantResponse, Foundation, FoundationStage, MessageRole, Stage
from .suggestions import MAX_SUGGESTIONS, ApiSuggester, heuristic_suggestions
from .threads import FOUNDATION_CONVERSATION, ThreadBinding
from .tracker import CreationTracker, FoundationTracker, extract_main_genre
from .transitions import CommandKind, determine_next_stage, parse_command

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = (
    "Welcome to Foundation Builder the starting point for your story creation journey! "
    "In this interview, we'll build the foundation for a living story world that will evolve "
    "as you create characters and narratives within it. We'll start by exploring genre elements "
    "to establish the tone and themes that will bring your world to life. "
    "What type of genre would you like to explore for your story world?"
)

APOLOGY = "Sorry, I had trouble processing your request. Please try again."
CREATION_APOLOGY = "Sorry, I had trouble processing that. Could you try again?"

STAGE_APOLOGIES: Dict[Stage, str] = {
    Stage.GENRE: (
        "I had some trouble creating a genre based on your input. Could you try giving me "
        "a bit more detail about what kind of story you want to create?"
    ),
    Stage.WORLD: (
        "I had some trouble creating a world based on your input. Could you try giving me "
        "a bit more detail about what kind of setting you want for your story?"
    ),
    Stage.CHARACTERS: (
        "I had some trouble creating a character based on your input. Could you try giving me "
        "a bit more detail about the character you want for your story?"
    ),
}

STAGE_FOLLOW_UPS: Dict[Stage, str] = {
    Stage.GENRE: " Would you like to move on to creating your world now?",
    Stage.WORLD: " Would you like to move on to creating characters for this world now?",
}

STAGE_PROMPTS: Dict[Stage, str] = {
    Stage.WORLD: "Let's develop your world! What kind of setting did you have in mind?",
    Stage.CHARACTERS: (
        "Now let's create some interesting characters. Tell me about who you'd like to be in your story."
    ),
    Stage.INFLUENCES: (
        "What books, movies or stories have influenced your idea? "
        "This helps me understand your taste better."
    ),
    Stage.DETAILS: (
        "Let's add some final details to make your story unique. "
        "Any specific themes or elements you want to include?"
    ),
    Stage.READY: "Excellent! We have everything we need to create your interactive story. Ready to begin?",
}

ENVIRONMENT_HANDOFF = "Now let's explore the places where your story unfolds. Where should we begin?"

COMPONENT_ACKS = {
    CommandKind.SHOW_COMPONENTS: "Foundation components are now visible.",
    CommandKind.HIDE_COMPONENTS: "Foundation components are now hidden.",
}


@dataclass(frozen=True)
class AssistantReply:
    """What a message handler hands back for one turn."""

    content: str
    thread_id: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None
    response: Optional[DynamicAssistantResponse] = None


MessageHandler = Callable[[str, Optional[str], Any], Awaitable[AssistantReply]]


class VoiceCapability(Protocol):
    async def speak(self, text: str) -> None: ...


class Suggester(Protocol):
    async def suggest(
        self,
        user_message: str,
        assistant_reply: str,
        *,
        foundation_id: int | None = None,
        stage: Any = None,
    ) -> List[str]: ...


@dataclass(frozen=True)
class Capabilities:
    voice: Optional[VoiceCapability] = None
    persistence: Optional[MessagePersister] = None


@dataclass
class ChatMessage:
    role: MessageRole
    content: str
    stage: Optional[str] = None


@dataclass
class TurnResult:
    reply: str
    stage: str
    suggestions: List[str] = field(default_factory=list)
    stage_completed: bool = False
    failed: bool = False
    follow_up: Optional[str] = None


class ChatSession:
    """Shared turn mechanics: transcript, persistence, threads, suggestions, voice."""

    apology = APOLOGY

    def __init__(
        self,
        handler: MessageHandler,
        *,
        capabilities: Capabilities | None = None,
        suggester: Suggester | None = None,
        foundation_id: int | None = None,
    ) -> None:
        self._handler = handler
        self.capabilities = capabilities or Capabilities()
        self._suggester = suggester
        self.foundation_id = foundation_id
        self.messages: List[ChatMessage] = []
        self.suggestions: List[str] = []
        self.voice_error: Optional[str] = None
        self.threads = ThreadBinding(persist=self._persist_thread)

    async def _persist_thread(self, conversation: str, thread_id: str) -> None:
        """Store a changed thread id; sessions without a backing record keep it in memory."""

    @property
    def persistence_warning(self) -> Optional[str]:
        persister = self.capabilities.persistence
        return persister.warning if persister is not None else None

    def _record(self, role: MessageRole, content: str, stage: Any = None, *, persist: bool = True) -> None:
        stage_value = getattr(stage, "value", stage)
        self.messages.append(ChatMessage(role=role, content=content, stage=stage_value))
        persister = self.capabilities.persistence
        if persist and persister is not None and self.foundation_id is not None:
            persister.submit(self.foundation_id, role, content)

    async def _ask(self, text: str, conversation: str, stage: Any) -> AssistantReply | None:
        try:
            reply = await self._handler(text, self.threads.get(conversation), stage)
        except (StoryFlowError, httpx.HTTPError) as exc:
            logger.error("Assistant call for %s failed: %s", conversation, exc)
            return None
        await self.threads.bind(conversation, reply.thread_id)
        return reply

    async def _suggest(self, user_message: str, assistant_reply: str, stage: Any) -> List[str]:
        """Fetch chips for the latest exchange; on any failure the previous chips stay."""

        if self._suggester is None:
            return heuristic_suggestions(assistant_reply, stage)
        try:
            return await self._suggester.suggest(
                user_message,
                assistant_reply,
                foundation_id=self.foundation_id,
                stage=stage,
            )
        except Exception as exc:
            logger.warning("Suggestion fetch failed, keeping previous chips: %s", exc)
            return list(self.suggestions)

    async def _speak(self, text: str) -> None:
        voice = self.capabilities.voice
        if voice is None:
            return
        try:
            await voice.speak(text)
        except (StoryFlowError, httpx.HTTPError) as exc:
            logger.warning("Speech playback failed: %s", exc)
            self.voice_error = "Voice playback failed. Check your API key in settings."
        else:
            self.voice_error = None

    async def _finish_turn(
        self,
        user_text: str,
        content: str,
        stage: Any,
        *,
        stage_completed: bool = False,
        failed: bool = False,
    ) -> TurnResult:
        self._record(MessageRole.ASSISTANT, content, stage)
        await self._speak(content)
        if failed:
            self.suggestions = []
        else:
            self.suggestions = await self._suggest(user_text, content, stage)
        return TurnResult(
            reply=content,
            stage=getattr(stage, "value", str(stage)),
            suggestions=list(self.suggestions),
            stage_completed=stage_completed,
            failed=failed,
        )

    async def aclose(self) -> None:
        if self.capabilities.persistence is not None:
            await self.capabilities.persistence.aclose()


class CreationSession(ChatSession):
    """The standalone genre, world, characters, influences, details interview."""

    apology = CREATION_APOLOGY

    def __init__(
        self,
        handler: MessageHandler,
        *,
        capabilities: Capabilities | None = None,
        suggester: Suggester | None = None,
        tracker: CreationTracker | None = None,
    ) -> None:
        super().__init__(handler, capabilities=capabilities, suggester=suggester)
        self.tracker = tracker or CreationTracker()

    @property
    def stage(self) -> Stage:
        return self.tracker.stage

    def select_stage(self, stage: Stage) -> None:
        """Manual selection from the sidebar skips the transition policy."""

        self.tracker.select_stage(stage)

    async def send(self, text: str) -> TurnResult | None:
        text = text.strip()
        if not text:
            return None

        current = self.tracker.stage
        self._record(MessageRole.USER, text, current)
        next_stage = Stage(determine_next_stage(current, text))
        if current is Stage.INFLUENCES:
            self.tracker.add_inspiration(text)

        completed = False
        if current in STAGE_APOLOGIES:
            self.tracker.record_user_turn(current, text)
            reply = await self._ask(text, current.value, current)
            if reply is None:
                return await self._finish_turn(text, STAGE_APOLOGIES[current], current, failed=True)
            content, completed = self._absorb_reply(current, reply)
        else:
            content = STAGE_PROMPTS.get(next_stage, "Tell me more about your ideas for the story.")

        self.tracker.select_stage(next_stage)
        return await self._finish_turn(text, content, next_stage, stage_completed=completed)

    def _absorb_reply(self, stage: Stage, reply: AssistantReply) -> tuple[str, bool]:
        if stage is Stage.CHARACTERS and reply.summary and isinstance(reply.summary.get("name"), str):
            summary = reply.summary
            self.tracker.add_character(summary)
            content = (
                f"I've created a character named {summary['name']}, who is {summary.get('role') or 'a mystery'}. "
                f"{summary.get('background') or ''} "
                "Would you like to create another character or move on to the next stage?"
            )
            completed = self.tracker.record_reply(
                stage, content, thread_id=reply.thread_id, summary=summary
            )
            return content, completed

        completed = self.tracker.record_reply(
            stage, reply.content, thread_id=reply.thread_id, summary=reply.summary
        )
        content = reply.content
        if stage in STAGE_FOLLOW_UPS and not content.strip().endswith("?"):
            content += STAGE_FOLLOW_UPS[stage]
        return content, completed


class DynamicAssistantHandler:
    """Message handler that sends turns to the dynamic-assistant endpoint."""

    def __init__(self, client: StoryFlowClient, foundation_id: int) -> None:
        self._client = client
        self._foundation_id = foundation_id

    async def __call__(self, message: str, thread_id: str | None, stage: Any) -> AssistantReply:
        response = await self._client.dynamic_assistant(
            self._foundation_id,
            message,
            thread_id=thread_id,
            current_assistant_type=stage if isinstance(stage, FoundationStage) else None,
        )
        if not response.success:
            raise AssistantUnavailableError(f"Dynamic assistant failed for foundation {self._foundation_id}")
        return AssistantReply(content=response.content, thread_id=response.thread_id, response=response)


class FoundationChatSession(ChatSession):
    """The foundation builder conversation, backed by the HTTP API."""

    def __init__(
        self,
        client: StoryFlowClient,
        foundation: Foundation,
        *,
        capabilities: Capabilities | None = None,
        suggester: Suggester | None = None,
        handler: MessageHandler | None = None,
    ) -> None:
        super().__init__(
            handler or DynamicAssistantHandler(client, foundation.id),
            capabilities=capabilities,
            suggester=suggester or ApiSuggester(client.http),
            foundation_id=foundation.id,
        )
        self._client = client
        self.foundation = foundation
        self.tracker = FoundationTracker.from_foundation(foundation)
        self.threads.seed(FOUNDATION_CONVERSATION, foundation.thread_id)
        self.load_error: Optional[str] = None
        self.pending_names: List[str] = []

    @property
    def stage(self) -> FoundationStage:
        return self.tracker.stage

    async def _persist_thread(self, conversation: str, thread_id: str) -> None:
        self.foundation = await self._client.update_foundation(self.foundation.id, thread_id=thread_id)

    async def _sync_stage(self) -> None:
        try:
            self.foundation = await self._client.update_foundation(
                self.foundation.id, current_stage=self.tracker.stage
            )
        except httpx.HTTPError as exc:
            logger.warning("Could not store stage for foundation %s: %s", self.foundation.id, exc)

    async def select_stage(self, stage: FoundationStage) -> None:
        if self.tracker.move_to(stage, reason="Stage selected manually."):
            await self._sync_stage()

    async def start(self) -> List[ChatMessage]:
        """Show the welcome message for a new foundation or reload an existing transcript."""

        if not self.foundation.thread_id:
            self._record(MessageRole.ASSISTANT, WELCOME_MESSAGE, self.tracker.stage)
            self.suggestions = await self._suggest("", WELCOME_MESSAGE, self.tracker.stage)
            return list(self.messages)

        try:
            stored = await self._client.list_messages(self.foundation.id)
        except httpx.HTTPError as exc:
            logger.error("Could not load messages for foundation %s: %s", self.foundation.id, exc)
            self.load_error = f"Failed to load conversation: {exc}"
            self.messages = []
            return []

        self.messages = [ChatMessage(role=item.role, content=item.content) for item in stored]
        roles = [message.role for message in self.messages]
        last_user = max((i for i, role in enumerate(roles) if role is MessageRole.USER), default=-1)
        last_assistant = max((i for i, role in enumerate(roles) if role is MessageRole.ASSISTANT), default=-1)
        if last_user >= 0 and last_assistant > last_user:
            self.suggestions = await self._suggest(
                self.messages[last_user].content,
                self.messages[last_assistant].content,
                self.tracker.stage,
            )
        return list(self.messages)

    async def send(self, text: str) -> TurnResult | None:
        text = text.strip()
        if not text:
            return None

        self._record(MessageRole.USER, text, self.tracker.stage)
        if self.pending_names:
            names, self.pending_names = self.pending_names, []
            if is_name_selection_response(text, names):
                content = await self._apply_name_choice(text, names)
                return await self._finish_turn(text, content, self.tracker.stage)

        command = parse_command(text)
        if command is not None:
            moved = self.tracker.apply_command(command)
            if command.kind in COMPONENT_ACKS:
                return await self._finish_turn(text, COMPONENT_ACKS[command.kind], self.tracker.stage)
            if moved:
                await self._sync_stage()

        genre_was_complete = self.tracker.is_complete(FoundationStage.GENRE)
        reply = await self._ask(text, FOUNDATION_CONVERSATION, self.tracker.stage)
        if reply is None:
            return await self._finish_turn(text, self.apology, self.tracker.stage, failed=True)

        response = reply.response
        if response is not None:
            self.tracker.apply_server_transition(
                response.context_type,
                is_auto_transition=response.is_auto_transition,
                flags=response.flags,
                current_stage=response.current_stage,
            )
            completed = response.stage_completed
        else:
            completed = self.tracker.apply_reply(reply.content)

        result = await self._finish_turn(text, reply.content, self.tracker.stage, stage_completed=completed)
        if not genre_was_complete and self.tracker.is_complete(FoundationStage.GENRE):
            await self._offer_names(reply.content, result)
        return result

    async def _offer_names(self, genre_summary: str, result: TurnResult) -> None:
        """Offer new foundation names once the genre is settled."""

        main_genre = extract_main_genre(genre_summary) or self.foundation.genre or None
        try:
            names = await self._client.suggest_names(
                self.foundation.id, genre_summary=genre_summary, main_genre=main_genre
            )
        except httpx.HTTPError as exc:
            logger.warning("Could not fetch name suggestions for foundation %s: %s", self.foundation.id, exc)
            return
        if not names:
            return

        offer = name_offer_message(main_genre, names, self.foundation.name)
        self._record(MessageRole.ASSISTANT, offer, self.tracker.stage)
        await self._speak(offer)
        self.pending_names = list(names)
        self.suggestions = [*names, KEEP_NAME_OPTION][:MAX_SUGGESTIONS]
        result.follow_up = offer
        result.suggestions = list(self.suggestions)

    async def _apply_name_choice(self, text: str, names: List[str]) -> str:
        selected = parse_name_selection(text, names)
        if selected is None:
            return f'No problem, we\'ll keep the name "{self.foundation.name}". {ENVIRONMENT_HANDOFF}'
        try:
            self.foundation = await self._client.rename_foundation(self.foundation.id, selected)
        except httpx.HTTPError as exc:
            logger.warning("Could not rename foundation %s: %s", self.foundation.id, exc)
            current = self.foundation.name
            return f'I couldn\'t rename your foundation just now, so it stays "{current}". {ENVIRONMENT_HANDOFF}'
        return f'Great choice! I\'ve renamed your foundation to "{selected}". {ENVIRONMENT_HANDOFF}'

    async def begin_story_ready(self) -> bool:
        """Refresh the foundation and report whether "Begin Story" is unlocked."""

        self.foundation = await self._client.get_foundation(self.foundation.id)
        self.tracker.merge_flags(self.foundation.completion_flags())
        if self.foundation.current_stage.order > self.tracker.stage.order:
            self.tracker.move_to(self.foundation.current_stage)
        return self.tracker.can_begin_story
