from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, List, Optional

import pytest

from freevox.config import Settings
from freevox.errors import PersistenceError
from freevox.services.supabase_persistence import SupabaseConversationStore


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


class FakeQuery:
    def __init__(self, client: "FakeClient", table: str) -> None:
        self._client = client
        self.table = table
        self.ops: List[tuple] = []

    def _record(self, *op: Any) -> "FakeQuery":
        self.ops.append(op)
        return self

    def insert(self, data: Any) -> "FakeQuery":
        return self._record("insert", data)

    def select(self, columns: str) -> "FakeQuery":
        return self._record("select", columns)

    def update(self, data: Any) -> "FakeQuery":
        return self._record("update", data)

    def delete(self) -> "FakeQuery":
        return self._record("delete")

    def eq(self, column: str, value: Any) -> "FakeQuery":
        return self._record("eq", column, value)

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        return self._record("order", column, desc)

    def limit(self, count: int) -> "FakeQuery":
        return self._record("limit", count)

    def execute(self) -> SimpleNamespace:
        self._client.executed.append((self.table, self.ops))
        if self._client.error is not None:
            raise self._client.error
        data = self._client.responses.pop(0) if self._client.responses else []
        return SimpleNamespace(data=data)


class FakeClient:
    def __init__(self, responses: Optional[List[Any]] = None, error: Optional[Exception] = None) -> None:
        self.responses = list(responses or [])
        self.error = error
        self.executed: List[tuple] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


def test_create_conversation_returns_inserted_row() -> None:
    client = FakeClient(responses=[[{"id": "conv_1", "title": "Untitled Conversation"}]])
    store = SupabaseConversationStore(client=client)  # type: ignore[arg-type]

    row = _run(store.create_conversation("Untitled Conversation"))

    assert row["id"] == "conv_1"
    table, ops = client.executed[0]
    assert table == "conversations"
    assert ops[0][0] == "insert"
    assert ops[0][1]["title"] == "Untitled Conversation"


def test_create_conversation_without_row_raises() -> None:
    store = SupabaseConversationStore(client=FakeClient(responses=[[]]))  # type: ignore[arg-type]
    with pytest.raises(PersistenceError):
        _run(store.create_conversation("Untitled Conversation"))


def test_add_message_bumps_conversation_timestamp() -> None:
    client = FakeClient(responses=[[{"id": "msg_1"}], []])
    store = SupabaseConversationStore(client=client)  # type: ignore[arg-type]

    message_id = _run(store.add_message("conv_1", "user", "Hello"))

    assert message_id == "msg_1"
    (messages_table, insert_ops), (conversations_table, update_ops) = client.executed
    assert messages_table == "messages"
    assert insert_ops[0][1]["conversation_id"] == "conv_1"
    assert insert_ops[0][1]["role"] == "user"
    assert conversations_table == "conversations"
    assert update_ops[0][0] == "update"
    assert ("eq", "id", "conv_1") in update_ops


def test_list_messages_orders_by_creation() -> None:
    rows = [{"role": "user", "content": "Hi", "created_at": "t1"}, "junk"]
    client = FakeClient(responses=[rows])
    store = SupabaseConversationStore(client=client)  # type: ignore[arg-type]

    messages = _run(store.list_messages("conv_1"))

    assert messages == [rows[0]]
    _, ops = client.executed[0]
    assert ("order", "created_at", False) in ops


def test_get_conversation_missing_returns_none() -> None:
    store = SupabaseConversationStore(client=FakeClient(responses=[[]]))  # type: ignore[arg-type]
    assert _run(store.get_conversation("conv_404")) is None


def test_client_errors_become_persistence_errors() -> None:
    store = SupabaseConversationStore(client=FakeClient(error=RuntimeError("connection reset")))  # type: ignore[arg-type]
    with pytest.raises(PersistenceError, match="connection reset"):
        _run(store.list_conversations())


def test_store_without_credentials_is_disabled() -> None:
    store = SupabaseConversationStore(Settings(supabase_url=None, supabase_service_role_key=None))
    assert not store.enabled
    with pytest.raises(PersistenceError):
        _run(store.get_conversation("conv_1"))
