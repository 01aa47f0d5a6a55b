"""Prompt template catalogue operations."""

from typing import Any

from docsync.db.supabase_client import get_supabase


def list_templates(document_type: str | None = None) -> list[dict[str, Any]]:
    """List templates, optionally restricted to one document type."""
    supabase = get_supabase()
    query = supabase.table("templates").select("*")
    if document_type:
        query = query.eq("document_type", document_type)
    response = query.execute()
    return response.data or []


def get_template(template_id: str) -> dict[str, Any] | None:
    """Get a template by ID."""
    supabase = get_supabase()
    response = (
        supabase.table("templates")
        .select("*")
        .eq("id", template_id)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None
