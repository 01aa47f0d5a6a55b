"""Document head database operations.

One row per (conversation_id, document_type). Heads are only written through
``docsync.core.version_store`` (content/pointer) and
``docsync.core.staleness`` (is_stale).
"""

from typing import Any
from uuid import UUID

from docsync.core.logging import get_logger
from docsync.db.supabase_client import get_supabase

logger = get_logger(__name__)


def get_document(conversation_id: UUID, document_type: str) -> dict[str, Any] | None:
    """Get the head row for one document type, if any."""
    supabase = get_supabase()
    response = (
        supabase.table("documents")
        .select("*")
        .eq("conversation_id", str(conversation_id))
        .eq("document_type", document_type)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def upsert_document(
    conversation_id: UUID,
    document_type: str,
    content: str,
    current_version_id: UUID,
    template_id: str | None = None,
) -> dict[str, Any]:
    """
    Point a document head at a version, creating the head if needed.

    Committing a version always clears staleness for that type.

    Args:
        conversation_id: Conversation UUID
        document_type: Document type value
        content: Content copied from the version
        current_version_id: Version the head now references
        template_id: Template the version was generated with

    Returns:
        Upserted head row

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("documents")
            .upsert(
                {
                    "conversation_id": str(conversation_id),
                    "document_type": document_type,
                    "content": content,
                    "current_version_id": str(current_version_id),
                    "template_id": template_id,
                    "is_stale": False,
                },
                on_conflict="conversation_id,document_type",
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from upsert_document")

        return response.data[0]

    except Exception as e:
        logger.error(
            f"Failed to upsert {document_type} head: {e}",
            extra={"conversation_id": str(conversation_id)},
        )
        raise


def set_document_stale(conversation_id: UUID, document_type: str, is_stale: bool) -> bool:
    """
    Set the staleness flag on an existing document head.

    Returns:
        True if a head row was updated, False if the document does not exist

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("documents")
            .update({"is_stale": is_stale})
            .eq("conversation_id", str(conversation_id))
            .eq("document_type", document_type)
            .execute()
        )
        return bool(response.data)

    except Exception as e:
        logger.error(
            f"Failed to set is_stale={is_stale} on {document_type}: {e}",
            extra={"conversation_id": str(conversation_id)},
        )
        raise
