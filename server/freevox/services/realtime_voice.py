"""Realtime voice session management.

``VoiceSessionCoordinator`` owns one browser voice session: it drives the
upstream realtime connection, folds streamed transcripts and tool calls into
conversation turns, and relays client-facing events. Every entry point runs
under one lock so upstream and client events are processed strictly in order.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Set

from typing_extensions import assert_never

from ..models.schemas import ToolResult, Turn
from . import realtime_frames as frames
from .realtime_client import RealtimeConnection, RealtimeListener
from .realtime_events import (
    AssistantTextDelta,
    AssistantTextDone,
    AudioDelta,
    AudioDone,
    FunctionCallAdded,
    FunctionCallArgumentsDelta,
    FunctionCallDone,
    ResponseCreated,
    ResponseFinished,
    ServerEvent,
    SpeechStarted,
    SpeechStopped,
    UpstreamError,
    UserItem,
    UserTranscriptCompleted,
    UserTranscriptDelta,
    parse_server_event,
)
from .realtime_frames import RealtimeSessionConfig
from .tool_calls import TOOL_CALL_FAILED, UNSUPPORTED_TOOL_ROUTE, ToolCallTracker, tool_error_output
from .transcripts import TranscriptAccumulator


logger = logging.getLogger(__name__)

# Audio appended before the upstream is ready; later frames are dropped.
AUDIO_QUEUE_LIMIT = 8


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


class ClientChannel(Protocol):
    """Client-facing side of the session (the browser websocket)."""

    async def send_event(self, event: Dict[str, Any]) -> None: ...


TurnHook = Callable[[Turn], Awaitable[None]]
ConnectionFactory = Callable[[str, Dict[str, str], RealtimeListener], RealtimeConnection]


def _tool_output(result: ToolResult) -> str:
    output = result.content if result.content is not None else result.result
    if output is None and result.error:
        return tool_error_output(TOOL_CALL_FAILED, result.error)
    if isinstance(output, str):
        return output
    return json.dumps(output if output is not None else {})


class VoiceSessionCoordinator:
    """State machine for one voice session: IDLE -> CONNECTING -> ACTIVE -> CLOSED.

    ``history`` is shared with the owner and only ever appended to. Committed
    turns are also handed to ``on_turn`` (the conversation store hook) in the
    background; failures there are reported to the client and never end the
    session.
    """

    def __init__(
        self,
        channel: ClientChannel,
        config: RealtimeSessionConfig,
        history: List[Turn],
        *,
        on_turn: Optional[TurnHook] = None,
        connection_factory: ConnectionFactory = RealtimeConnection,
        session_id: Optional[str] = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.config = config
        self.history = history
        self.state = SessionState.IDLE
        self.playback_high_water_mark = 0

        self._channel = channel
        self._on_turn = on_turn
        self._connection_factory = connection_factory
        self._connection: Optional[RealtimeConnection] = None
        self._lock = asyncio.Lock()
        self._writes: Set[asyncio.Task[None]] = set()

        self._tools: List[Dict[str, Any]] = []
        self._queue: List[Dict[str, Any]] = []
        self._transcripts = TranscriptAccumulator()
        self._tool_calls = ToolCallTracker()
        self._buffer_has_audio = False
        self._response_in_flight = False
        self._response_after_done = False
        self._current_response_id: Optional[str] = None
        self._cancelled_responses: Set[str] = set()
        # Barge-ins that hit a requested response before response.created named it.
        self._unnamed_cancels = 0
        self._interrupted = False
        self._audio_bytes_forwarded = 0

        self._seed_prefix = uuid.uuid4().hex[:12]
        self._seed_counter = 0
        self._seeded_item_ids: Set[str] = set()
        self._consumed_seed_ids: Set[str] = set()
        self._pending_seeds = 0

    # -- read-only views -------------------------------------------------

    @property
    def response_in_flight(self) -> bool:
        return self._response_in_flight

    @property
    def pending_seed_count(self) -> int:
        return self._pending_seeds

    @property
    def queued_frames(self) -> List[Dict[str, Any]]:
        return list(self._queue)

    @property
    def tool_calls(self) -> ToolCallTracker:
        return self._tool_calls

    @property
    def transcripts(self) -> TranscriptAccumulator:
        return self._transcripts

    # -- client operations -----------------------------------------------

    async def start(self, tools: Optional[Sequence[Dict[str, Any]]] = None) -> None:
        async with self._lock:
            if tools is not None:
                self._tools = list(tools)
            await self._open()

    async def submit_audio_frame(self, audio: str) -> None:
        async with self._lock:
            if self.state is SessionState.CLOSED:
                logger.debug("[Session %s] Audio after close ignored", self.session_id)
                return
            if self.state is SessionState.IDLE:
                await self._open()
            frame = frames.audio_append(audio)
            if self.state is SessionState.ACTIVE:
                await self._send(frame)
            elif len(self._queue) < AUDIO_QUEUE_LIMIT:
                self._queue.append(frame)
            else:
                logger.debug("[Session %s] Audio queue full; dropping frame", self.session_id)
            self._buffer_has_audio = True

    async def submit_tool_results(self, results: Sequence[ToolResult]) -> None:
        async with self._lock:
            if self.state is not SessionState.ACTIVE:
                logger.warning(
                    "[Session %s] Tool results ignored in state %s", self.session_id, self.state.value
                )
                return
            forwarded = 0
            for result in results:
                if not result.tool_call_id:
                    logger.warning("[Session %s] Ignoring tool result without tool_call_id", self.session_id)
                    continue
                await self._send(frames.function_call_output(result.tool_call_id, _tool_output(result)))
                forwarded += 1
            if forwarded and not self._response_in_flight:
                await self._request_response()

    async def stop(self) -> None:
        async with self._lock:
            if self.state is SessionState.CLOSED:
                return
            if self._response_in_flight and self.state is SessionState.ACTIVE:
                await self._send(frames.response_cancel())
            await self._teardown("stopped by client")

    async def on_client_disconnect(self) -> None:
        async with self._lock:
            if self.state is SessionState.CLOSED:
                return
            await self._teardown("client disconnected")

    async def wait_for_writes(self) -> None:
        """Wait for background conversation store writes to finish."""

        if self._writes:
            await asyncio.gather(*list(self._writes))

    # -- upstream listener -----------------------------------------------

    async def on_upstream_ready(self) -> None:
        async with self._lock:
            if self.state is not SessionState.CONNECTING:
                return
            self.state = SessionState.ACTIVE
            logger.info("[Session %s] Upstream ready", self.session_id)
            await self._send(frames.session_update(self.config, self._tools))
            await self._seed_history()
            queued, self._queue = self._queue, []
            for frame in queued:
                await self._send(frame)

    async def on_upstream_event(self, payload: Dict[str, Any]) -> None:
        event = parse_server_event(payload)
        if event is None:
            return
        async with self._lock:
            if self.state is not SessionState.ACTIVE:
                return
            await self._dispatch(event)

    async def on_upstream_closed(self) -> None:
        async with self._lock:
            if self.state is SessionState.CLOSED:
                return
            logger.warning("[Session %s] Upstream connection lost", self.session_id)
            await self._teardown("upstream closed")

    async def on_upstream_error(self, detail: str) -> None:
        await self._emit(
            {
                "type": "error",
                "message": "OpenAI realtime connection failed.",
                "detail": detail,
            }
        )

    # -- internals ---------------------------------------------------------

    async def _open(self) -> None:
        if self.state is SessionState.CLOSED:
            logger.warning("[Session %s] Start ignored; session is closed", self.session_id)
            return
        if self._connection is not None:
            return
        self.state = SessionState.CONNECTING
        logger.info("[Session %s] Connecting to %s", self.session_id, self.config.endpoint)
        self._connection = self._connection_factory(self.config.endpoint, self.config.headers, self)
        await self._connection.connect()

    async def _teardown(self, reason: str) -> None:
        self.state = SessionState.CLOSED
        connection, self._connection = self._connection, None
        self._queue.clear()
        self._transcripts.clear()
        self._tool_calls.clear()
        self._buffer_has_audio = False
        self._response_in_flight = False
        self._response_after_done = False
        self._current_response_id = None
        self._cancelled_responses.clear()
        self._unnamed_cancels = 0
        self._interrupted = False
        self._seeded_item_ids.clear()
        self._consumed_seed_ids.clear()
        self._pending_seeds = 0
        if connection is not None:
            await connection.close()
        logger.info("[Session %s] Voice session closed (%s)", self.session_id, reason)

    async def _send(self, frame: Dict[str, Any]) -> bool:
        if self._connection is None:
            return False
        return await self._connection.send(frame)

    async def _emit(self, event: Dict[str, Any]) -> None:
        await self._channel.send_event(event)

    async def _request_response(self) -> None:
        await self._send(frames.response_create())
        self._response_in_flight = True

    async def _seed_history(self) -> None:
        for turn in list(self.history):
            if turn.role == "system" or not turn.content:
                continue
            item_id = f"seed_{self._seed_prefix}_{self._seed_counter}"
            self._seed_counter += 1
            if turn.role == "user":
                self._seeded_item_ids.add(item_id)
                self._pending_seeds += 1
            await self._send(frames.seed_message(item_id, turn.role, turn.content))

    def _is_stale(self, response_id: Optional[str]) -> bool:
        if self._interrupted:
            return True
        return response_id is not None and response_id in self._cancelled_responses

    def _commit_turn(self, turn: Turn) -> None:
        self.history.append(turn)
        if self._on_turn is None:
            return
        task = asyncio.create_task(self._persist(self._on_turn, turn))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _persist(self, hook: TurnHook, turn: Turn) -> None:
        try:
            await hook(turn)
        except Exception as exc:
            logger.exception("[Session %s] Failed to persist %s turn", self.session_id, turn.role)
            await self._emit(
                {
                    "type": "error",
                    "message": "Failed to save conversation history.",
                    "detail": str(exc),
                }
            )

    async def _dispatch(self, event: ServerEvent) -> None:
        if isinstance(event, SpeechStarted):
            await self._on_speech_started()
        elif isinstance(event, SpeechStopped):
            await self._on_speech_stopped()
        elif isinstance(event, ResponseCreated):
            await self._on_response_created(event)
        elif isinstance(event, ResponseFinished):
            await self._on_response_finished(event)
        elif isinstance(event, FunctionCallAdded):
            if not self._is_stale(event.response_id):
                self._tool_calls.add(event.item_id, event.call_id, event.name, event.arguments)
        elif isinstance(event, FunctionCallArgumentsDelta):
            self._tool_calls.append_arguments(event.item_id, event.delta)
        elif isinstance(event, FunctionCallDone):
            await self._on_function_call_done(event)
        elif isinstance(event, AudioDelta):
            if event.audio and not self._is_stale(event.response_id):
                self._audio_bytes_forwarded += len(event.audio) * 3 // 4
                await self._emit({"type": "assistant_audio_delta", "audio": event.audio})
        elif isinstance(event, AudioDone):
            if not self._is_stale(event.response_id):
                self.playback_high_water_mark = self._audio_bytes_forwarded
                await self._emit({"type": "assistant_audio_done"})
        elif isinstance(event, AssistantTextDelta):
            if not self._is_stale(event.response_id):
                self._transcripts.assistant.append(event.delta)
                await self._emit({"type": "assistant_voice_text_delta", "delta": event.delta})
        elif isinstance(event, AssistantTextDone):
            if not self._is_stale(event.response_id):
                await self._commit_assistant_transcript()
        elif isinstance(event, UserTranscriptDelta):
            self._transcripts.user.append(event.delta)
            await self._emit({"type": "user_voice_text_delta", "delta": event.delta})
        elif isinstance(event, UserTranscriptCompleted):
            await self._on_user_transcript_completed(event)
        elif isinstance(event, UserItem):
            await self._on_user_item(event)
        elif isinstance(event, UpstreamError):
            logger.warning("[Session %s] Realtime error %s: %s", self.session_id, event.code, event.message)
            await self._emit(
                {
                    "type": "assistant_voice_error",
                    "message": event.message,
                    "code": event.code,
                    "detail": event.detail,
                }
            )
        else:
            assert_never(event)

    async def _on_speech_started(self) -> None:
        self._transcripts.user.reset()
        await self._emit({"type": "user_voice_start"})
        if not self._response_in_flight:
            return
        await self._send(frames.response_cancel())
        await self._emit({"type": "assistant_audio_interrupt"})
        self._transcripts.assistant.discard()
        self._response_after_done = False
        if self._current_response_id:
            self._cancelled_responses.add(self._current_response_id)
        else:
            self._unnamed_cancels += 1
        self._interrupted = True
        self._response_in_flight = False
        logger.info("[Session %s] Barge-in; cancelled response %s", self.session_id, self._current_response_id)

    async def _on_response_created(self, event: ResponseCreated) -> None:
        if self._unnamed_cancels > 0:
            # The earlier cancel reached the provider before this response existed.
            self._unnamed_cancels -= 1
            if event.response_id:
                self._cancelled_responses.add(event.response_id)
            await self._send(frames.response_cancel())
            logger.info("[Session %s] Cancelled late response %s", self.session_id, event.response_id)
            return
        self._response_in_flight = True
        self._current_response_id = event.response_id
        self._interrupted = False
        self._tool_calls.clear()

    async def _on_speech_stopped(self) -> None:
        # Server VAD can report a stop without any audio appended since the last commit.
        if not self._buffer_has_audio:
            return
        await self._send(frames.audio_commit())
        self._buffer_has_audio = False
        if not self._response_in_flight:
            await self._request_response()

    async def _on_response_finished(self, event: ResponseFinished) -> None:
        if event.response_id is not None and event.response_id in self._cancelled_responses:
            self._cancelled_responses.discard(event.response_id)
            return
        self._response_in_flight = False
        self._current_response_id = None
        if event.kind == "completed" and not self._interrupted:
            await self._commit_assistant_transcript()
        if self._response_after_done:
            self._response_after_done = False
            await self._request_response()

    async def _on_function_call_done(self, event: FunctionCallDone) -> None:
        if self._is_stale(event.response_id):
            return
        call = self._tool_calls.finalize(event.item_id, event.call_id, event.name, event.arguments)
        routable = {tool.get("name") for tool in self._tools}
        if routable and call.name not in routable:
            logger.warning("[Session %s] Model requested unknown tool %r", self.session_id, call.name)
            output = tool_error_output(UNSUPPORTED_TOOL_ROUTE, f"Tool {call.name!r} is not available in this session.")
            await self._send(frames.function_call_output(call.call_id, output))
            self._response_after_done = True
            return
        await self._emit({"type": "assistant_voice_tool_calls", "toolCalls": [call.to_client()]})

    async def _commit_assistant_transcript(self) -> None:
        text = self._transcripts.assistant.take()
        if not text:
            return
        self._commit_turn(Turn(role="assistant", content=text))
        await self._emit({"type": "assistant_voice_text_done"})

    def _commit_user_transcript(self, transcript: str) -> bool:
        user = self._transcripts.user
        if not transcript or user.is_duplicate(transcript):
            return False
        self._commit_turn(Turn(role="user", content=transcript))
        user.mark_committed(transcript)
        return True

    async def _on_user_transcript_completed(self, event: UserTranscriptCompleted) -> None:
        user = self._transcripts.user
        transcript = user.resolve(event.transcript)
        delta_sent = user.delta_sent
        if self._commit_user_transcript(transcript) and not delta_sent:
            await self._emit({"type": "user_voice_text_delta", "delta": transcript})
        user.finish()
        await self._emit({"type": "user_voice_text_done"})

    async def _on_user_item(self, item: UserItem) -> None:
        if self._is_seed_echo(item):
            return
        user = self._transcripts.user
        delta_sent = user.delta_sent
        transcript = item.transcript
        if not self._commit_user_transcript(transcript):
            return
        if not delta_sent:
            await self._emit({"type": "user_voice_text_delta", "delta": transcript})
        user.finish()
        await self._emit({"type": "user_voice_text_done"})

    def _is_seed_echo(self, item: UserItem) -> bool:
        if item.item_id is not None and item.item_id in self._consumed_seed_ids:
            return True
        tagged = item.item_id is not None and item.item_id in self._seeded_item_ids
        untagged = self._pending_seeds > 0 and item.has_text and not item.has_audio
        if not (tagged or untagged):
            return False
        if item.item_id is not None:
            self._seeded_item_ids.discard(item.item_id)
            self._consumed_seed_ids.add(item.item_id)
        if self._pending_seeds > 0:
            self._pending_seeds -= 1
        return True
