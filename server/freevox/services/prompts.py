"""System prompt assembly for new and resumed conversations."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..config import settings

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a concise, friendly assistant. Keep answers helpful and brief."
UNTITLED_CONVERSATION = "Untitled Conversation"


def load_system_prompt(path: Optional[str] = None) -> str:
    """Read the prompt file if configured and non-empty, otherwise use the default."""

    path = path or settings.system_prompt_path
    if not path:
        return DEFAULT_SYSTEM_PROMPT
    try:
        text = Path(path).read_text(encoding="utf-8").strip()
    except OSError:
        logger.warning("System prompt file %s unreadable; using default", path)
        return DEFAULT_SYSTEM_PROMPT
    return text or DEFAULT_SYSTEM_PROMPT


def date_time_message(now: Optional[datetime] = None) -> str:
    now = now or datetime.now().astimezone()
    return f"The current date and time is {now.strftime('%A, %B %d, %Y at %I:%M:%S %p %Z').strip()}."


def build_system_prompt(base: Optional[str] = None, now: Optional[datetime] = None) -> str:
    return f"{base or load_system_prompt()}\n\n{date_time_message(now)}"
