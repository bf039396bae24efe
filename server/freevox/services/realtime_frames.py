"""Builders for frames sent to the OpenAI Realtime API.

These shapes are a fixed wire contract (beta ``realtime=v1`` protocol,
PCM16 mono 24 kHz audio as base64 in both directions).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from ..config import Settings


RESPONSE_MODALITIES = ["audio", "text"]


@dataclass
class RealtimeSessionConfig:
    """Per-session knobs for the upstream realtime connection."""

    api_key: str
    instructions: str
    url: str = "wss://api.openai.com/v1/realtime"
    model: str = "gpt-realtime"
    voice: str = "alloy"
    voice_style: str = ""
    transcription_model: str = "gpt-4o-mini-transcribe"
    transcription_language: str = "en"
    vad_threshold: float = 0.5
    vad_prefix_padding_ms: int = 300
    vad_silence_duration_ms: int = 500

    @classmethod
    def from_settings(cls, settings: Settings, instructions: str) -> "RealtimeSessionConfig":
        return cls(
            api_key=settings.openai_api_key or "",
            instructions=instructions,
            url=settings.realtime_url,
            model=settings.realtime_model,
            voice=settings.realtime_voice,
            voice_style=settings.realtime_voice_style,
            transcription_model=settings.realtime_transcription_model,
            transcription_language=settings.realtime_transcription_language,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.url}?model={self.model}"

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }

    @property
    def full_instructions(self) -> str:
        if self.voice_style:
            return f"{self.instructions}\n\nVoice style: {self.voice_style}"
        return self.instructions


def session_update(config: RealtimeSessionConfig, tools: List[Dict[str, Any]]) -> Dict[str, Any]:
    session: Dict[str, Any] = {
        "modalities": list(RESPONSE_MODALITIES),
        "instructions": config.full_instructions,
        "voice": config.voice,
        "input_audio_format": "pcm16",
        "output_audio_format": "pcm16",
        "input_audio_transcription": {
            "model": config.transcription_model,
            "language": config.transcription_language,
        },
        "turn_detection": {
            "type": "server_vad",
            "threshold": config.vad_threshold,
            "prefix_padding_ms": config.vad_prefix_padding_ms,
            "silence_duration_ms": config.vad_silence_duration_ms,
        },
    }
    if tools:
        session["tools"] = tools
    return {"type": "session.update", "session": session}


def seed_message(item_id: str, role: str, text: str) -> Dict[str, Any]:
    """Replay one stored turn into a fresh upstream conversation."""

    text_type = "input_text" if role == "user" else "output_text"
    return {
        "type": "conversation.item.create",
        "item": {
            "id": item_id,
            "type": "message",
            "role": role,
            "content": [{"type": text_type, "text": text}],
        },
    }


def function_call_output(call_id: str, output: str) -> Dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "item": {"type": "function_call_output", "call_id": call_id, "output": output},
    }


def audio_append(audio: str) -> Dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": audio}


def audio_commit() -> Dict[str, Any]:
    return {"type": "input_audio_buffer.commit"}


def response_create() -> Dict[str, Any]:
    return {"type": "response.create", "response": {"modalities": list(RESPONSE_MODALITIES)}}


def response_cancel() -> Dict[str, Any]:
    return {"type": "response.cancel"}
