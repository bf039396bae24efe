"""Conversation bookkeeping for voice sessions.

``ConversationRecorder`` is the store hook handed to the voice coordinator:
it lazily creates the stored conversation on the first committed turn, writes
every turn, and names the conversation once the first exchange is complete.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Set

from openai import AsyncOpenAI, OpenAIError

from ..config import settings
from ..errors import PersistenceError, TitleGenerationError
from ..models.schemas import Turn
from .prompts import UNTITLED_CONVERSATION
from .realtime_voice import ClientChannel

logger = logging.getLogger(__name__)


class ConversationStore(Protocol):
    async def create_conversation(self, title: str) -> Dict[str, Any]: ...

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]: ...

    async def update_conversation_title(self, conversation_id: str, title: str) -> None: ...

    async def add_message(self, conversation_id: str, role: str, content: str) -> Optional[str]: ...

    async def list_messages(self, conversation_id: str) -> List[Dict[str, Any]]: ...


class TitleGenerator(Protocol):
    async def generate(self, user_message: str, assistant_message: str) -> str: ...


class OpenAITitleGenerator:
    """Short conversation titles via the Responses API."""

    def __init__(self, *, model: Optional[str] = None, client: Optional[AsyncOpenAI] = None) -> None:
        self._model = model or settings.title_model
        self._client = client

    def _ensure_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)
        return self._client

    async def generate(self, user_message: str, assistant_message: str) -> str:
        try:
            response = await self._ensure_client().responses.create(
                model=self._model,
                input=[
                    {
                        "role": "system",
                        "content": "Generate a short title (max 6 words) for this conversation. Reply with only the title.",
                    },
                    {"role": "user", "content": f"User: {user_message}\nAssistant: {assistant_message}"},
                ],
            )
        except OpenAIError as exc:
            raise TitleGenerationError(str(exc)) from exc
        return (response.output_text or "").strip()


class ConversationRecorder:
    """Persists committed turns for one client connection."""

    def __init__(
        self,
        channel: ClientChannel,
        store: Optional[ConversationStore],
        *,
        system_prompt: str,
        title_generator: Optional[TitleGenerator] = None,
    ) -> None:
        self.conversation_id: Optional[str] = None
        self.system_prompt = system_prompt
        self._channel = channel
        self._store = store
        self._titles = title_generator
        self._first_user = ""
        self._first_assistant = ""
        self._title_requested = False
        self._tasks: Set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()

    async def record(self, turn: Turn) -> None:
        """Store ``turn``; raises ``PersistenceError`` when the store fails."""

        if self._store is None or not turn.content:
            return
        # Turns arrive from concurrent background writes; keep creation and order single-file.
        async with self._lock:
            if self.conversation_id is None:
                conversation = await self._store.create_conversation(UNTITLED_CONVERSATION)
                self.conversation_id = str(conversation["id"])
                await self._store.add_message(self.conversation_id, "system", self.system_prompt)
                await self._channel.send_event({"type": "conversation_started", "conversation": conversation})
                await self._channel.send_event({"type": "conversations_updated"})
            await self._store.add_message(self.conversation_id, turn.role, turn.content)
            self._track_title(self._store, self.conversation_id, turn)

    def _track_title(self, store: ConversationStore, conversation_id: str, turn: Turn) -> None:
        if turn.role == "user" and not self._first_user:
            self._first_user = turn.content
            return
        if turn.role != "assistant" or not self._first_user or self._first_assistant or self._title_requested:
            return
        self._first_assistant = turn.content
        self._title_requested = True
        if self._titles is None:
            return
        task = asyncio.create_task(
            self._update_title(self._titles, store, conversation_id, self._first_user, self._first_assistant)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _update_title(
        self,
        titles: TitleGenerator,
        store: ConversationStore,
        conversation_id: str,
        user_message: str,
        assistant_message: str,
    ) -> None:
        try:
            title = await titles.generate(user_message, assistant_message)
            if title:
                await store.update_conversation_title(conversation_id, title)
                await self._channel.send_event({"type": "conversations_updated"})
        except (TitleGenerationError, PersistenceError) as exc:
            logger.warning("Failed to update title for conversation %s: %s", conversation_id, exc)
            await self._channel.send_event(
                {"type": "error", "message": "Failed to update conversation title.", "detail": str(exc)}
            )

    async def select(self, conversation_id: str) -> Optional[List[Turn]]:
        """Adopt a stored conversation; returns its turns, or ``None`` when it does not exist."""

        if self._store is None:
            raise PersistenceError("Conversation storage is not configured")
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            return None
        turns = [
            Turn(role=row["role"], content=row["content"])
            for row in await self._store.list_messages(conversation_id)
            if row.get("role") in ("user", "assistant", "system") and isinstance(row.get("content"), str)
        ]
        self.conversation_id = conversation_id
        self._first_user = next((turn.content for turn in turns if turn.role == "user"), "")
        self._first_assistant = next((turn.content for turn in turns if turn.role == "assistant"), "")
        self._title_requested = conversation.get("title") != UNTITLED_CONVERSATION or bool(
            self._first_user and self._first_assistant
        )
        return turns

    def reset(self, system_prompt: str) -> None:
        self.conversation_id = None
        self.system_prompt = system_prompt
        self._first_user = ""
        self._first_assistant = ""
        self._title_requested = False

    async def wait_for_titles(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
