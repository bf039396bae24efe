"""Normalization of OpenAI Realtime server events.

The provider is inconsistent across releases: the same signal arrives as
``response.audio.delta`` or ``response.output_audio.delta``, text comes in
``delta`` or ``text``, and function-call items are identified by ``id`` or
``call_id``. ``parse_server_event`` folds all of that into the small closed
set of dataclasses below so the voice coordinator never branches on provider
quirks.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Literal, Optional, Union


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SpeechStarted:
    pass


@dataclass(slots=True)
class SpeechStopped:
    pass


@dataclass(slots=True)
class ResponseCreated:
    response_id: Optional[str] = None


@dataclass(slots=True)
class ResponseFinished:
    kind: Literal["completed", "done", "cancelled"]
    response_id: Optional[str] = None


@dataclass(slots=True)
class FunctionCallAdded:
    item_id: str
    call_id: str
    name: str = ""
    arguments: str = ""
    response_id: Optional[str] = None


@dataclass(slots=True)
class FunctionCallArgumentsDelta:
    item_id: str
    delta: str


@dataclass(slots=True)
class FunctionCallDone:
    item_id: str
    call_id: str
    name: str = ""
    arguments: Optional[str] = None
    response_id: Optional[str] = None


@dataclass(slots=True)
class AudioDelta:
    audio: str
    response_id: Optional[str] = None


@dataclass(slots=True)
class AudioDone:
    response_id: Optional[str] = None


@dataclass(slots=True)
class AssistantTextDelta:
    delta: str
    response_id: Optional[str] = None


@dataclass(slots=True)
class AssistantTextDone:
    response_id: Optional[str] = None


@dataclass(slots=True)
class UserTranscriptDelta:
    delta: str


@dataclass(slots=True)
class UserTranscriptCompleted:
    transcript: str = ""


@dataclass(slots=True)
class UserItem:
    """A user message item announced via ``conversation.item.created/updated``."""

    item_id: Optional[str]
    text: str = ""
    audio_transcript: str = ""
    has_text: bool = False
    has_audio: bool = False

    @property
    def transcript(self) -> str:
        return self.text or self.audio_transcript


@dataclass(slots=True)
class UpstreamError:
    message: str
    code: str
    detail: Any


ServerEvent = Union[
    SpeechStarted,
    SpeechStopped,
    ResponseCreated,
    ResponseFinished,
    FunctionCallAdded,
    FunctionCallArgumentsDelta,
    FunctionCallDone,
    AudioDelta,
    AudioDone,
    AssistantTextDelta,
    AssistantTextDone,
    UserTranscriptDelta,
    UserTranscriptCompleted,
    UserItem,
    UpstreamError,
]


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _optional_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _delta(payload: Dict[str, Any], *fields: str) -> str:
    for name in fields:
        value = payload.get(name)
        if isinstance(value, str) and value:
            return value
    return ""


def _function_call_ids(item: Dict[str, Any]) -> Optional[tuple[str, str]]:
    item_id = _optional_text(item.get("id")) or _optional_text(item.get("call_id"))
    call_id = _optional_text(item.get("call_id")) or _optional_text(item.get("id"))
    if item_id is None or call_id is None:
        return None
    return item_id, call_id


def _response_id(payload: Dict[str, Any]) -> Optional[str]:
    response = payload.get("response")
    if isinstance(response, dict) and response.get("id"):
        return _optional_text(response.get("id"))
    return _optional_text(payload.get("response_id"))


def _function_call_added(payload: Dict[str, Any]) -> Optional[ServerEvent]:
    item = payload.get("item")
    if not isinstance(item, dict) or item.get("type") != "function_call":
        return None
    ids = _function_call_ids(item)
    if ids is None:
        return None
    return FunctionCallAdded(
        item_id=ids[0],
        call_id=ids[1],
        name=_text(item.get("name")),
        arguments=_text(item.get("arguments")),
        response_id=_optional_text(payload.get("response_id")),
    )


def _function_call_done(payload: Dict[str, Any]) -> Optional[ServerEvent]:
    item = payload.get("item")
    if not isinstance(item, dict) or item.get("type") != "function_call":
        return None
    ids = _function_call_ids(item)
    if ids is None:
        return None
    arguments = item.get("arguments")
    return FunctionCallDone(
        item_id=ids[0],
        call_id=ids[1],
        name=_text(item.get("name")),
        arguments=arguments if isinstance(arguments, str) else None,
        response_id=_optional_text(payload.get("response_id")),
    )


def _arguments_delta(payload: Dict[str, Any]) -> Optional[ServerEvent]:
    item_id = _optional_text(payload.get("item_id")) or _optional_text(payload.get("call_id"))
    if item_id is None:
        return None
    return FunctionCallArgumentsDelta(item_id=item_id, delta=_text(payload.get("delta")))


def _user_item(payload: Dict[str, Any]) -> Optional[ServerEvent]:
    item = payload.get("item")
    if not isinstance(item, dict) or item.get("role") != "user":
        return None
    content = item.get("content")
    if not isinstance(content, list):
        return None
    parts = [part for part in content if isinstance(part, dict)]
    text_part = next((part for part in parts if part.get("type") == "input_text"), None)
    audio_part = next((part for part in parts if part.get("type") == "input_audio"), None)
    return UserItem(
        item_id=_optional_text(item.get("id")),
        text=_text(text_part.get("text")) if text_part else "",
        audio_transcript=_text(audio_part.get("transcript")) if audio_part else "",
        has_text=text_part is not None,
        has_audio=audio_part is not None,
    )


def _error(payload: Dict[str, Any]) -> ServerEvent:
    error = payload.get("error")
    if isinstance(error, dict):
        return UpstreamError(
            message=_text(error.get("message")) or "Voice error",
            code=_text(error.get("code")),
            detail=error,
        )
    return UpstreamError(
        message=_text(payload.get("message")) or "Voice error",
        code=_text(payload.get("code")),
        detail=payload,
    )


def _audio_delta(payload: Dict[str, Any]) -> ServerEvent:
    return AudioDelta(audio=_delta(payload, "delta", "audio"), response_id=_optional_text(payload.get("response_id")))


def _audio_done(payload: Dict[str, Any]) -> ServerEvent:
    return AudioDone(response_id=_optional_text(payload.get("response_id")))


def _assistant_delta(payload: Dict[str, Any]) -> Optional[ServerEvent]:
    delta = _delta(payload, "delta", "text")
    if not delta:
        return None
    return AssistantTextDelta(delta=delta, response_id=_optional_text(payload.get("response_id")))


def _assistant_done(payload: Dict[str, Any]) -> ServerEvent:
    return AssistantTextDone(response_id=_optional_text(payload.get("response_id")))


def _user_delta(payload: Dict[str, Any]) -> Optional[ServerEvent]:
    delta = _delta(payload, "delta", "text")
    return UserTranscriptDelta(delta=delta) if delta else None


def _user_completed(payload: Dict[str, Any]) -> ServerEvent:
    return UserTranscriptCompleted(transcript=_delta(payload, "transcript", "text"))


def _finished(kind: Literal["completed", "done", "cancelled"]) -> Callable[[Dict[str, Any]], ServerEvent]:
    def build(payload: Dict[str, Any]) -> ServerEvent:
        return ResponseFinished(kind=kind, response_id=_response_id(payload))

    return build


_PARSERS: Dict[str, Callable[[Dict[str, Any]], Optional[ServerEvent]]] = {
    "input_audio_buffer.speech_started": lambda payload: SpeechStarted(),
    "input_audio_buffer.speech_stopped": lambda payload: SpeechStopped(),
    "response.created": lambda payload: ResponseCreated(response_id=_response_id(payload)),
    "response.output_item.added": _function_call_added,
    "response.function_call_arguments.delta": _arguments_delta,
    "response.output_item.done": _function_call_done,
    "response.audio.delta": _audio_delta,
    "response.output_audio.delta": _audio_delta,
    "response.audio.done": _audio_done,
    "response.output_audio.done": _audio_done,
    "response.text.delta": _assistant_delta,
    "response.output_text.delta": _assistant_delta,
    "response.audio_transcript.delta": _assistant_delta,
    "response.output_audio_transcript.delta": _assistant_delta,
    "response.text.done": _assistant_done,
    "response.output_text.done": _assistant_done,
    "response.audio_transcript.done": _assistant_done,
    "response.output_audio_transcript.done": _assistant_done,
    "conversation.item.input_audio_transcription.delta": _user_delta,
    "input_audio_transcription.delta": _user_delta,
    "conversation.item.input_audio_transcription.completed": _user_completed,
    "input_audio_transcription.completed": _user_completed,
    "conversation.item.created": _user_item,
    "conversation.item.updated": _user_item,
    "error": _error,
    "response.completed": _finished("completed"),
    "response.done": _finished("done"),
    "response.cancelled": _finished("cancelled"),
}


def parse_server_event(payload: Any) -> Optional[ServerEvent]:
    """Return the normalized event for ``payload`` or ``None`` when it is irrelevant or malformed."""

    if not isinstance(payload, dict):
        return None
    event_type = payload.get("type")
    parser = _PARSERS.get(event_type) if isinstance(event_type, str) else None
    if parser is None:
        return None
    try:
        return parser(payload)
    except (AttributeError, TypeError, ValueError):
        logger.debug("Dropping malformed realtime event %s", event_type, exc_info=True)
        return None
