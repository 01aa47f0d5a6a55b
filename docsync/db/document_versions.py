"""Database access layer for immutable document versions."""

from typing import Any
from uuid import UUID

from docsync.core.logging import get_logger
from docsync.db.supabase_client import get_supabase

logger = get_logger(__name__)


def insert_document_version(
    conversation_id: UUID,
    document_type: str,
    version_number: int,
    content: str,
    reason_for_change: str,
    template_id: str | None = None,
    tokens_used: int = 0,
) -> dict[str, Any]:
    """Create an immutable version record."""
    supabase = get_supabase()
    data = {
        "conversation_id": str(conversation_id),
        "document_type": document_type,
        "version_number": version_number,
        "content": content,
        "reason_for_change": reason_for_change,
        "template_id": template_id,
        "tokens_used": tokens_used,
    }
    response = supabase.table("document_versions").insert(data).execute()
    if not response.data:
        raise ValueError("Failed to create document version")
    logger.info(
        f"Created {document_type} v{version_number}",
        extra={"conversation_id": str(conversation_id)},
    )
    return response.data[0]


def get_document_version(version_id: UUID) -> dict[str, Any] | None:
    """Get a document version by ID."""
    supabase = get_supabase()
    response = (
        supabase.table("document_versions")
        .select("*")
        .eq("id", str(version_id))
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def list_document_versions(conversation_id: UUID, document_type: str) -> list[dict[str, Any]]:
    """List all versions of one document type, ordered by version number."""
    supabase = get_supabase()
    response = (
        supabase.table("document_versions")
        .select("*")
        .eq("conversation_id", str(conversation_id))
        .eq("document_type", document_type)
        .order("version_number", desc=False)
        .execute()
    )
    return response.data or []


def get_latest_document_version(
    conversation_id: UUID, document_type: str
) -> dict[str, Any] | None:
    """Get the highest-numbered version of one document type."""
    supabase = get_supabase()
    response = (
        supabase.table("document_versions")
        .select("*")
        .eq("conversation_id", str(conversation_id))
        .eq("document_type", document_type)
        .order("version_number", desc=True)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None
