"""Browser-facing websocket for voice sessions."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing_extensions import assert_never

from ..config import Settings, settings as default_settings
from ..errors import PersistenceError
from ..models.schemas import (
    AudioChunk,
    AudioStart,
    AudioStop,
    ClientEvent,
    ConversationNew,
    ConversationSelect,
    Turn,
    VoiceToolResults,
    client_event_adapter,
)
from ..services.conversation import ConversationRecorder, ConversationStore, OpenAITitleGenerator, TitleGenerator
from ..services.prompts import build_system_prompt, date_time_message, load_system_prompt
from ..services.realtime_client import RealtimeConnection
from ..services.realtime_frames import RealtimeSessionConfig
from ..services.realtime_voice import ClientChannel, ConnectionFactory, SessionState, VoiceSessionCoordinator
from ..services.supabase_persistence import get_conversation_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


class WebSocketChannel:
    """Sends JSON events to the browser, tolerating a socket that already went away."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def send_event(self, event: Dict[str, Any]) -> None:
        try:
            await self._websocket.send_text(json.dumps(event))
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Client socket gone; dropping %s event", event.get("type"))


class VoiceGateway:
    """Per-connection routing of client events to the voice session.

    The gateway owns the conversation history; each voice session
    (audio_start .. audio_stop) gets a fresh coordinator appending to it.
    """

    def __init__(
        self,
        channel: ClientChannel,
        *,
        store: Optional[ConversationStore] = None,
        title_generator: Optional[TitleGenerator] = None,
        config: Optional[Settings] = None,
        connection_factory: ConnectionFactory = RealtimeConnection,
        base_prompt: Optional[str] = None,
    ) -> None:
        self._channel = channel
        self._settings = config or default_settings
        self._connection_factory = connection_factory
        self._base_prompt = base_prompt or load_system_prompt()
        self.system_prompt = build_system_prompt(self._base_prompt)
        self.history: List[Turn] = [Turn(role="system", content=self.system_prompt)]
        self.recorder = ConversationRecorder(
            channel, store, system_prompt=self.system_prompt, title_generator=title_generator
        )
        self.voice: Optional[VoiceSessionCoordinator] = None

    def _voice_session(self) -> VoiceSessionCoordinator:
        if self.voice is None or self.voice.state is SessionState.CLOSED:
            self.voice = VoiceSessionCoordinator(
                self._channel,
                RealtimeSessionConfig.from_settings(self._settings, self.system_prompt),
                self.history,
                on_turn=self.recorder.record,
                connection_factory=self._connection_factory,
            )
        return self.voice

    async def _error(self, message: str, detail: Optional[str] = None) -> None:
        event: Dict[str, Any] = {"type": "error", "message": message}
        if detail is not None:
            event["detail"] = detail
        await self._channel.send_event(event)

    async def handle_text(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            await self._error("Invalid JSON.")
            return
        try:
            event = client_event_adapter.validate_python(message)
        except ValidationError as exc:
            logger.debug("Rejected client payload: %s", exc)
            await self._error("Invalid message payload.")
            return
        await self.handle_event(event)

    async def handle_event(self, event: ClientEvent) -> None:
        if isinstance(event, AudioStart):
            tools = [tool.to_realtime() for tool in event.tools] if event.tools is not None else None
            await self._voice_session().start(tools)
        elif isinstance(event, AudioChunk):
            await self._voice_session().submit_audio_frame(event.audio)
        elif isinstance(event, AudioStop):
            if self.voice is not None:
                await self.voice.stop()
        elif isinstance(event, VoiceToolResults):
            if self.voice is None:
                logger.warning("Tool results received without a voice session")
                return
            await self.voice.submit_tool_results(event.results)
        elif isinstance(event, ConversationSelect):
            await self._select_conversation(event.conversation_id)
        elif isinstance(event, ConversationNew):
            self.system_prompt = build_system_prompt(self._base_prompt)
            self.history[:] = [Turn(role="system", content=self.system_prompt)]
            self.recorder.reset(self.system_prompt)
        else:
            assert_never(event)

    async def _select_conversation(self, conversation_id: str) -> None:
        try:
            turns = await self.recorder.select(conversation_id)
        except PersistenceError as exc:
            await self._error("Failed to load conversation.", str(exc))
            return
        if turns is None:
            await self._error("Conversation not found.")
            return
        if not any(turn.role == "system" for turn in turns):
            turns.insert(0, Turn(role="system", content=self._base_prompt))
        now_message = date_time_message()
        turns.append(Turn(role="system", content=now_message))
        base = next(turn.content for turn in turns if turn.role == "system")
        self.system_prompt = f"{base}\n\n{now_message}"
        # In place: an open voice session appends to the same list.
        self.history[:] = turns

    async def close(self) -> None:
        if self.voice is not None:
            await self.voice.on_client_disconnect()
            await self.voice.wait_for_writes()
        await self.recorder.wait_for_titles()


@router.websocket("/ws")
async def realtime_voice_gateway(websocket: WebSocket) -> None:
    """Relay one browser connection to the OpenAI Realtime API."""

    await websocket.accept()
    gateway = VoiceGateway(
        WebSocketChannel(websocket),
        store=get_conversation_store(),
        title_generator=OpenAITitleGenerator(),
    )
    try:
        while True:
            data = await websocket.receive_text()
            await gateway.handle_text(data)
    except WebSocketDisconnect:
        logger.info("Client disconnected")
    finally:
        await gateway.close()
