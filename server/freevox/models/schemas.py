"""Pydantic models describing client payloads and conversation turns."""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter


Role = Literal["user", "assistant", "system"]


class Turn(BaseModel):
    """One message in the conversation history."""

    role: Role
    content: str


class ToolDefinition(BaseModel):
    """Function tool the browser offers to the voice session."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        validation_alias=AliasChoices("parameters", "parametersSchema", "inputSchema"),
    )

    def to_realtime(self) -> Dict[str, Any]:
        """Render the definition in the realtime ``session.update`` tool format."""

        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class ToolResult(BaseModel):
    """Output the browser produced for one assistant tool call."""

    model_config = ConfigDict(extra="ignore")

    tool_call_id: Optional[str] = None
    content: Any = None
    result: Any = None
    error: Optional[str] = None


class AudioStart(BaseModel):
    type: Literal["audio_start"]
    tools: Optional[List[ToolDefinition]] = None


class AudioChunk(BaseModel):
    type: Literal["audio_chunk"]
    audio: str = Field(..., min_length=1, description="Base64 PCM16 mono 24 kHz samples")


class AudioStop(BaseModel):
    type: Literal["audio_stop"]


class VoiceToolResults(BaseModel):
    type: Literal["voice_tool_results"]
    results: List[ToolResult] = Field(default_factory=list)


class ConversationSelect(BaseModel):
    type: Literal["conversation_select"]
    conversation_id: str = Field(..., min_length=1, validation_alias=AliasChoices("conversationId", "conversation_id"))


class ConversationNew(BaseModel):
    type: Literal["conversation_new"]


ClientEvent = Annotated[
    Union[AudioStart, AudioChunk, AudioStop, VoiceToolResults, ConversationSelect, ConversationNew],
    Field(discriminator="type"),
]

client_event_adapter: TypeAdapter[ClientEvent] = TypeAdapter(ClientEvent)
