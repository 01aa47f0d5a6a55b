"""Account profile database operations."""

from typing import Any
from uuid import UUID

from docsync.core.logging import get_logger
from docsync.db.supabase_client import get_supabase

logger = get_logger(__name__)


def get_profile(user_id: UUID) -> dict[str, Any] | None:
    """Get a user's profile (plan, token usage and limit)."""
    supabase = get_supabase()
    response = (
        supabase.table("user_profiles")
        .select("*")
        .eq("id", str(user_id))
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def update_profile_tokens(user_id: UUID, tokens_used: int) -> None:
    """
    Persist the account-wide token total.

    Args:
        user_id: User UUID
        tokens_used: Absolute running total (not a delta)

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        supabase.table("user_profiles").update({"tokens_used": tokens_used}).eq(
            "id", str(user_id)
        ).execute()

    except Exception as e:
        logger.error(f"Failed to update token usage for user {user_id}: {e}")
        raise
