"""Tracking of function calls streamed by the realtime model."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)

UNSUPPORTED_TOOL_ROUTE = "UNSUPPORTED_TOOL_ROUTE"
TOOL_CALL_FAILED = "TOOL_CALL_FAILED"


def tool_error_output(code: str, message: str) -> str:
    """Content returned to the model in place of a tool result that could not be produced."""

    return json.dumps({"error": code, "message": message})


@dataclass(slots=True)
class PendingToolCall:
    local_id: str
    call_id: str
    name: str = ""
    arguments: str = ""
    done: bool = False

    def to_client(self) -> Dict[str, Any]:
        return {
            "id": self.local_id,
            "call_id": self.call_id,
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ToolCallTracker:
    """Pending calls keyed by item id; lookups fall back to the call id."""

    def __init__(self) -> None:
        self._calls: Dict[str, PendingToolCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def find(self, key: str) -> Optional[PendingToolCall]:
        call = self._calls.get(key)
        if call is not None:
            return call
        return next((entry for entry in self._calls.values() if entry.call_id == key), None)

    def add(self, item_id: str, call_id: str, name: str = "", arguments: str = "") -> PendingToolCall:
        call = PendingToolCall(local_id=item_id, call_id=call_id, name=name, arguments=arguments)
        self._calls[item_id] = call
        return call

    def append_arguments(self, key: str, delta: str) -> Optional[PendingToolCall]:
        call = self.find(key)
        if call is None:
            logger.debug("Argument delta for unknown tool call %s", key)
            return None
        call.arguments += delta
        return call

    def finalize(
        self,
        item_id: str,
        call_id: str,
        name: str = "",
        arguments: Optional[str] = None,
    ) -> PendingToolCall:
        call = self._calls.get(item_id) or self.find(call_id)
        if call is None:
            call = self.add(item_id, call_id, name, arguments or "")
        else:
            call.local_id = item_id or call.local_id
            call.call_id = call_id or call.call_id
            call.name = name or call.name
            if arguments:
                call.arguments = arguments
        call.done = True
        return call

    def clear(self) -> None:
        self._calls.clear()
