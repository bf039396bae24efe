from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

from freevox.config import Settings
from freevox.routers.realtime import VoiceGateway
from freevox.services.realtime_voice import SessionState


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


class FakeChannel:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    async def send_event(self, event: Dict[str, Any]) -> None:
        self.events.append(event)


class FakeConnection:
    def __init__(self, url: str, headers: Dict[str, str], listener: Any) -> None:
        self.listener = listener
        self.sent: List[Dict[str, Any]] = []
        self.closes = 0

    async def connect(self) -> None:
        return None

    async def send(self, frame: Dict[str, Any]) -> bool:
        self.sent.append(frame)
        return True

    async def close(self) -> None:
        self.closes += 1


class FakeConnectionFactory:
    def __init__(self) -> None:
        self.connections: List[FakeConnection] = []

    def __call__(self, url: str, headers: Dict[str, str], listener: Any) -> FakeConnection:
        connection = FakeConnection(url, headers, listener)
        self.connections.append(connection)
        return connection


class FakeStore:
    def __init__(self) -> None:
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.messages: List[tuple] = []

    async def create_conversation(self, title: str) -> Dict[str, Any]:
        conversation_id = f"conv_{len(self.conversations) + 1}"
        self.conversations[conversation_id] = {"id": conversation_id, "title": title}
        return self.conversations[conversation_id]

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        return self.conversations.get(conversation_id)

    async def update_conversation_title(self, conversation_id: str, title: str) -> None:
        self.conversations[conversation_id]["title"] = title

    async def add_message(self, conversation_id: str, role: str, content: str) -> Optional[str]:
        self.messages.append((conversation_id, role, content))
        return None

    async def list_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        return [{"role": role, "content": content} for owner, role, content in self.messages if owner == conversation_id]


def _gateway(store: Optional[FakeStore] = None):  # noqa: ANN202
    channel = FakeChannel()
    factory = FakeConnectionFactory()
    gateway = VoiceGateway(
        channel,
        store=store,
        config=Settings(openai_api_key="sk-test"),
        connection_factory=factory,
        base_prompt="Be brief.",
    )
    return gateway, channel, factory


def test_invalid_json_and_payloads_are_rejected() -> None:
    async def scenario():  # noqa: ANN202
        gateway, channel, factory = _gateway()
        await gateway.handle_text("{not json")
        await gateway.handle_text(json.dumps({"type": "bogus"}))
        await gateway.handle_text(json.dumps({"type": "audio_chunk", "audio": ""}))
        return channel, factory

    channel, factory = _run(scenario())
    assert channel.events == [
        {"type": "error", "message": "Invalid JSON."},
        {"type": "error", "message": "Invalid message payload."},
        {"type": "error", "message": "Invalid message payload."},
    ]
    assert factory.connections == []


def test_audio_start_renders_tools_for_session_update() -> None:
    async def scenario():  # noqa: ANN202
        gateway, channel, factory = _gateway()
        await gateway.handle_text(
            json.dumps(
                {
                    "type": "audio_start",
                    "tools": [
                        {
                            "name": "lookup",
                            "description": "Look it up",
                            "parametersSchema": {"type": "object", "properties": {"q": {"type": "string"}}},
                        }
                    ],
                }
            )
        )
        assert gateway.voice is not None
        await gateway.voice.on_upstream_ready()
        return factory

    factory = _run(scenario())
    session = factory.connections[0].sent[0]["session"]
    assert session["tools"] == [
        {
            "type": "function",
            "name": "lookup",
            "description": "Look it up",
            "parameters": {"type": "object", "properties": {"q": {"type": "string"}}},
        }
    ]
    assert session["instructions"].startswith("Be brief.\n\nThe current date and time is")


def test_audio_after_stop_opens_a_new_session() -> None:
    async def scenario():  # noqa: ANN202
        gateway, channel, factory = _gateway()
        await gateway.handle_text(json.dumps({"type": "audio_start"}))
        first = gateway.voice
        await gateway.handle_text(json.dumps({"type": "audio_stop"}))
        await gateway.handle_text(json.dumps({"type": "audio_chunk", "audio": "AAAA"}))
        return gateway, first, factory

    gateway, first, factory = _run(scenario())
    assert first is not None and first.state is SessionState.CLOSED
    assert gateway.voice is not first
    assert gateway.voice.state is SessionState.CONNECTING
    assert len(factory.connections) == 2
    assert factory.connections[0].closes == 1


def test_tool_results_without_session_are_ignored() -> None:
    async def scenario():  # noqa: ANN202
        gateway, channel, factory = _gateway()
        await gateway.handle_text(
            json.dumps({"type": "voice_tool_results", "results": [{"tool_call_id": "call_1", "content": "ok"}]})
        )
        return gateway, channel

    gateway, channel = _run(scenario())
    assert gateway.voice is None
    assert channel.events == []


def test_select_loads_history_and_refreshes_prompt() -> None:
    store = FakeStore()
    store.conversations["conv_5"] = {"id": "conv_5", "title": "Recipes"}
    store.messages.extend(
        [
            ("conv_5", "system", "Stored prompt."),
            ("conv_5", "user", "Pasta ideas?"),
            ("conv_5", "assistant", "Carbonara."),
        ]
    )

    async def scenario():  # noqa: ANN202
        gateway, channel, factory = _gateway(store)
        history = gateway.history
        await gateway.handle_text(json.dumps({"type": "conversation_select", "conversationId": "conv_5"}))
        return gateway, channel, history

    gateway, channel, history = _run(scenario())
    assert gateway.history is history
    assert [turn.role for turn in history] == ["system", "user", "assistant", "system"]
    assert history[-1].content.startswith("The current date and time is")
    assert gateway.system_prompt == f"Stored prompt.\n\n{history[-1].content}"
    assert gateway.recorder.conversation_id == "conv_5"
    assert channel.events == []


def test_select_errors_are_reported() -> None:
    async def scenario():  # noqa: ANN202
        missing, missing_channel, _ = _gateway(FakeStore())
        await missing.handle_text(json.dumps({"type": "conversation_select", "conversation_id": "nope"}))
        unconfigured, unconfigured_channel, _ = _gateway(None)
        await unconfigured.handle_text(json.dumps({"type": "conversation_select", "conversation_id": "conv_1"}))
        return missing_channel, unconfigured_channel

    missing_channel, unconfigured_channel = _run(scenario())
    assert missing_channel.events == [{"type": "error", "message": "Conversation not found."}]
    assert unconfigured_channel.events[0]["message"] == "Failed to load conversation."


def test_new_conversation_resets_history() -> None:
    store = FakeStore()

    async def scenario():  # noqa: ANN202
        gateway, channel, factory = _gateway(store)
        await gateway.handle_text(json.dumps({"type": "audio_start"}))
        assert gateway.voice is not None
        await gateway.voice.on_upstream_ready()
        await gateway.voice.on_upstream_event({"type": "input_audio_transcription.completed", "transcript": "Hello"})
        await gateway.voice.wait_for_writes()
        await gateway.handle_text(json.dumps({"type": "conversation_new"}))
        return gateway

    gateway = _run(scenario())
    assert [turn.role for turn in gateway.history] == ["system"]
    assert gateway.recorder.conversation_id is None
    assert list(store.conversations) == ["conv_1"]


def test_close_flushes_pending_writes() -> None:
    store = FakeStore()

    async def scenario():  # noqa: ANN202
        gateway, channel, factory = _gateway(store)
        await gateway.handle_text(json.dumps({"type": "audio_start"}))
        assert gateway.voice is not None
        await gateway.voice.on_upstream_ready()
        await gateway.voice.on_upstream_event({"type": "input_audio_transcription.completed", "transcript": "Bye"})
        await gateway.close()
        return gateway, factory

    gateway, factory = _run(scenario())
    assert gateway.voice is not None and gateway.voice.state is SessionState.CLOSED
    assert factory.connections[0].closes == 1
    assert [role for _, role, _ in store.messages] == ["system", "user"]
    assert store.messages[-1] == ("conv_1", "user", "Bye")
