"""Accumulators for partially streamed user and assistant transcripts."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class UserTranscript:
    """State for one user utterance, from speech start to transcription complete."""

    pending: str = ""
    delta_sent: bool = False
    last_committed: str = ""

    def append(self, delta: str) -> None:
        self.pending += delta
        self.delta_sent = True

    def resolve(self, final: Optional[str] = None) -> str:
        """Prefer the provider's final transcript, falling back to accumulated deltas."""

        return final or self.pending

    def is_duplicate(self, text: str) -> bool:
        return text == self.last_committed

    def mark_committed(self, text: str) -> None:
        self.last_committed = text

    def finish(self) -> None:
        self.pending = ""
        self.delta_sent = False

    def reset(self) -> None:
        self.finish()
        self.last_committed = ""


@dataclass
class AssistantTranscript:
    """At most one in-progress assistant utterance."""

    pending: str = ""

    def append(self, delta: str) -> None:
        self.pending += delta

    def take(self) -> str:
        text, self.pending = self.pending, ""
        return text

    def discard(self) -> None:
        self.pending = ""


@dataclass
class TranscriptAccumulator:
    user: UserTranscript = field(default_factory=UserTranscript)
    assistant: AssistantTranscript = field(default_factory=AssistantTranscript)

    def clear(self) -> None:
        self.user.reset()
        self.assistant.discard()
