"""Supabase-backed conversation store."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, Optional

from supabase import Client, create_client

from ..config import Settings, settings as default_settings
from ..errors import PersistenceError

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first_row(result: Any) -> Optional[dict[str, Any]]:
    data = getattr(result, "data", None)
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return None


def _rows(result: Any) -> list[dict[str, Any]]:
    data = getattr(result, "data", None)
    if not isinstance(data, list):
        return []
    return [row for row in data if isinstance(row, dict)]


class SupabaseConversationStore:
    """Durable conversation history in the ``conversations`` and ``messages`` tables.

    The supabase client is synchronous, so every call runs in a worker thread,
    serialized by a lock to keep message inserts in commit order.
    """

    def __init__(self, config: Optional[Settings] = None, *, client: Optional[Client] = None) -> None:
        config = config or default_settings
        self._url = config.supabase_url
        self._key = config.supabase_service_role_key
        self._enabled = client is not None or bool(self._url and self._key)
        self._client: Client | None = client
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        """Return whether Supabase persistence is configured."""

        return self._enabled

    def _ensure_client(self) -> Client:
        if not self._enabled:
            raise PersistenceError("Supabase credentials missing; persistence disabled")
        if self._client is None:
            self._client = create_client(self._url, self._key)
        return self._client

    async def _execute(self, fn: Callable[[Client], Any]) -> Any:
        async with self._lock:
            try:
                client = self._ensure_client()
                return await asyncio.to_thread(fn, client)
            except PersistenceError:
                raise
            except Exception as exc:
                logger.exception("Supabase persistence operation failed")
                raise PersistenceError(str(exc)) from exc

    async def create_conversation(self, title: str) -> dict[str, Any]:
        timestamp = _now()
        data = {"title": title, "created_at": timestamp, "updated_at": timestamp}
        result = await self._execute(lambda client: client.table("conversations").insert(data).execute())
        row = _first_row(result)
        if row is None:
            raise PersistenceError("Supabase did not return the created conversation")
        return row

    async def get_conversation(self, conversation_id: str) -> Optional[dict[str, Any]]:
        result = await self._execute(
            lambda client: client.table("conversations").select("*").eq("id", conversation_id).limit(1).execute()
        )
        return _first_row(result)

    async def list_conversations(self) -> list[dict[str, Any]]:
        result = await self._execute(
            lambda client: client.table("conversations").select("*").order("updated_at", desc=True).execute()
        )
        return _rows(result)

    async def update_conversation_title(self, conversation_id: str, title: str) -> None:
        data = {"title": title, "updated_at": _now()}
        await self._execute(
            lambda client: client.table("conversations").update(data).eq("id", conversation_id).execute()
        )

    async def delete_conversation(self, conversation_id: str) -> bool:
        result = await self._execute(
            lambda client: client.table("conversations").delete().eq("id", conversation_id).execute()
        )
        return bool(_rows(result))

    async def add_message(self, conversation_id: str, role: str, content: str) -> Optional[str]:
        """Persist a conversation message and return its id if available."""

        timestamp = _now()
        payload = {
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "created_at": timestamp,
        }
        result = await self._execute(lambda client: client.table("messages").insert(payload).execute())
        await self._execute(
            lambda client: client.table("conversations")
            .update({"updated_at": timestamp})
            .eq("id", conversation_id)
            .execute()
        )
        row = _first_row(result)
        if row is not None and isinstance(row.get("id"), str):
            return row["id"]
        return None

    async def list_messages(self, conversation_id: str) -> list[dict[str, Any]]:
        result = await self._execute(
            lambda client: client.table("messages")
            .select("role, content, created_at")
            .eq("conversation_id", conversation_id)
            .order("created_at")
            .execute()
        )
        return _rows(result)


@lru_cache(maxsize=1)
def get_conversation_store() -> Optional[SupabaseConversationStore]:
    """Return the process-wide store, or ``None`` when Supabase is not configured."""

    store = SupabaseConversationStore()
    if not store.enabled:
        logger.warning("Supabase credentials missing; conversations will not be persisted")
        return None
    return store
