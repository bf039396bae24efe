"""Configuration helpers for the voice relay service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Values are read once at import time; tests reload this module after
    patching the environment.
    """

    openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY")
    realtime_url: str = os.getenv("OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime")
    realtime_model: str = os.getenv("OPENAI_REALTIME_MODEL", "gpt-realtime")
    realtime_voice: str = os.getenv("OPENAI_REALTIME_VOICE", "alloy")
    realtime_transcription_model: str = os.getenv(
        "OPENAI_REALTIME_TRANSCRIPTION_MODEL", "gpt-4o-mini-transcribe"
    )
    realtime_transcription_language: str = os.getenv("OPENAI_REALTIME_TRANSCRIPTION_LANGUAGE", "en")
    # Appended to the instructions as "Voice style: ..." when set.
    realtime_voice_style: str = os.getenv("OPENAI_REALTIME_VOICE_STYLE", "")
    title_model: str = os.getenv("OPENAI_TITLE_MODEL", "gpt-4o-mini")
    system_prompt_path: Optional[str] = os.getenv("FREEVOX_SYSTEM_PROMPT_PATH")
    supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
    supabase_service_role_key: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "3000"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
