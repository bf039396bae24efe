"""Exception hierarchy shared across freevox services."""
from __future__ import annotations


class FreevoxError(Exception):
    """Base class for errors raised by freevox services."""


class PersistenceError(FreevoxError):
    """Raised when the conversation store rejects or fails an operation."""


class TitleGenerationError(FreevoxError):
    """Raised when a conversation title could not be generated."""
