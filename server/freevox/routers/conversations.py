"""Stored conversation endpoints backing the browser's history sidebar."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..errors import PersistenceError
from ..services.supabase_persistence import SupabaseConversationStore, get_conversation_store

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _require(store: Optional[SupabaseConversationStore]) -> SupabaseConversationStore:
    if store is None:
        raise HTTPException(status_code=503, detail="Conversation storage is not configured.")
    return store


@router.get("")
async def list_conversations(
    store: Optional[SupabaseConversationStore] = Depends(get_conversation_store),
) -> Dict[str, Any]:
    """Return stored conversations, most recently updated first."""

    try:
        conversations = await _require(store).list_conversations()
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=f"Failed to load conversations. {exc}") from exc
    return {"conversations": conversations}


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    store: Optional[SupabaseConversationStore] = Depends(get_conversation_store),
) -> Dict[str, Any]:
    store = _require(store)
    try:
        conversation = await store.get_conversation(conversation_id)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found.")
        messages = await store.list_messages(conversation_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=f"Failed to load conversation. {exc}") from exc
    return {"conversation": conversation, "messages": messages}


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    store: Optional[SupabaseConversationStore] = Depends(get_conversation_store),
) -> Dict[str, bool]:
    try:
        deleted = await _require(store).delete_conversation(conversation_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=f"Failed to delete conversation. {exc}") from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Conversation not found.")
    return {"deleted": True}
