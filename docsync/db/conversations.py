"""Conversation database operations."""

from typing import Any
from uuid import UUID

from docsync.core.logging import get_logger
from docsync.db.supabase_client import get_supabase

logger = get_logger(__name__)


def create_conversation(user_id: UUID, title: str) -> dict[str, Any]:
    """
    Insert a new conversation.

    Args:
        user_id: Owning user UUID
        title: Initial title

    Returns:
        Inserted conversation row

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("conversations")
            .insert({"user_id": str(user_id), "title": title, "total_tokens_used": 0})
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from create_conversation")

        row = response.data[0]
        logger.info(
            f"Created conversation {row['id']} for user {user_id}",
            extra={"conversation_id": row["id"]},
        )
        return row

    except Exception as e:
        logger.error(f"Failed to create conversation: {e}")
        raise


def get_conversation(conversation_id: UUID) -> dict[str, Any] | None:
    """Get a conversation by ID."""
    supabase = get_supabase()
    response = (
        supabase.table("conversations")
        .select("*")
        .eq("id", str(conversation_id))
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def list_conversations(user_id: UUID, limit: int = 50) -> list[dict[str, Any]]:
    """List a user's conversations, newest first."""
    supabase = get_supabase()
    response = (
        supabase.table("conversations")
        .select("*")
        .eq("user_id", str(user_id))
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return response.data or []


def update_conversation(conversation_id: UUID, patch: dict[str, Any]) -> dict[str, Any] | None:
    """
    Apply a partial update to a conversation.

    Args:
        conversation_id: Conversation UUID
        patch: Columns to update (e.g. title, total_tokens_used)

    Returns:
        Updated row, or None if no row matched

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("conversations")
            .update(patch)
            .eq("id", str(conversation_id))
            .execute()
        )
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(
            f"Failed to update conversation {conversation_id}: {e}",
            extra={"conversation_id": str(conversation_id)},
        )
        raise


def delete_conversation(conversation_id: UUID) -> None:
    """Delete a conversation. The store cascades to messages, documents and versions."""
    supabase = get_supabase()

    try:
        supabase.table("conversations").delete().eq("id", str(conversation_id)).execute()
        logger.info(
            f"Deleted conversation {conversation_id}",
            extra={"conversation_id": str(conversation_id)},
        )

    except Exception as e:
        logger.error(
            f"Failed to delete conversation {conversation_id}: {e}",
            extra={"conversation_id": str(conversation_id)},
        )
        raise
