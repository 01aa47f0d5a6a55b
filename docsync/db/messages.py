"""Chat message database operations."""

from typing import Any
from uuid import UUID

from docsync.core.logging import get_logger
from docsync.db.supabase_client import get_supabase

logger = get_logger(__name__)


def insert_message(row: dict[str, Any]) -> dict[str, Any]:
    """
    Insert a message row.

    Args:
        row: Serialized message (see Message.to_row)

    Returns:
        Inserted row as returned by the store

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = supabase.table("messages").insert(row).execute()

        if not response.data:
            raise ValueError("No data returned from insert_message")

        return response.data[0]

    except Exception as e:
        logger.error(
            f"Failed to insert {row.get('role')} message: {e}",
            extra={"conversation_id": str(row.get("conversation_id"))},
        )
        raise


def list_messages(conversation_id: UUID) -> list[dict[str, Any]]:
    """List a conversation's messages in chronological order."""
    supabase = get_supabase()
    response = (
        supabase.table("messages")
        .select("*")
        .eq("conversation_id", str(conversation_id))
        .order("created_at", desc=False)
        .execute()
    )
    return response.data or []


def update_message(message_id: UUID, patch: dict[str, Any]) -> dict[str, Any] | None:
    """Apply a partial update to a message (feedback only, after finalize)."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("messages")
            .update(patch)
            .eq("id", str(message_id))
            .execute()
        )
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to update message {message_id}: {e}")
        raise


def delete_message(message_id: UUID) -> None:
    """Delete a message by ID."""
    supabase = get_supabase()

    try:
        supabase.table("messages").delete().eq("id", str(message_id)).execute()
        logger.debug(f"Deleted message {message_id}")

    except Exception as e:
        logger.error(f"Failed to delete message {message_id}: {e}")
        raise
