"""API endpoints for documents, versions, templates and one-shot generations."""

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from docsync.api.deps import get_engine
from docsync.api.responses import http_error, sse_response
from docsync.core.conversation_engine import ConversationEngine
from docsync.core.errors import DocSyncError
from docsync.core.logging import get_logger
from docsync.core.rate_limiter import check_chat_rate_limit
from docsync.core.schemas_documents import STREAMABLE_TYPES, DocumentType

logger = get_logger(__name__)

router = APIRouter()


class GenerateDocumentRequest(BaseModel):
    template_id: str | None = None


class EditDocumentRequest(BaseModel):
    content: str


class ChangeTemplateRequest(BaseModel):
    template_id: str = Field(..., min_length=1)
    archive_current: bool | None = Field(
        None,
        description=(
            "Required when the document has content: true archives it as a version "
            "before regenerating, false regenerates without archiving"
        ),
    )


# ============================================================================
# Documents & versions
# ============================================================================


@router.get("/conversations/{conversation_id}/documents")
async def list_documents(
    conversation_id: UUID,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        return {"documents": await engine.list_documents(conversation_id)}

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Failed to list documents for {conversation_id}")
        raise HTTPException(status_code=500, detail="Failed to list documents") from e


@router.get("/conversations/{conversation_id}/documents/{doc_type}/versions")
async def list_versions(
    conversation_id: UUID,
    doc_type: DocumentType,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        versions = await engine.list_versions(conversation_id, doc_type)
        return {"versions": versions, "total": len(versions)}

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Failed to list {doc_type.value} versions for {conversation_id}")
        raise HTTPException(status_code=500, detail="Failed to list versions") from e


@router.put("/conversations/{conversation_id}/documents/{doc_type}")
async def edit_document(
    conversation_id: UUID,
    doc_type: DocumentType,
    request: EditDocumentRequest,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Save a user edit as a new version."""
    try:
        version, notices = await engine.edit_document(conversation_id, doc_type, request.content)
        return {"version": version, "notices": notices}

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Failed to edit {doc_type.value} for {conversation_id}")
        raise HTTPException(status_code=500, detail="Failed to save document") from e


@router.post("/conversations/{conversation_id}/documents/versions/{version_id}/restore")
async def restore_version(
    conversation_id: UUID,
    version_id: UUID,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Make an old version current by committing a copy of it as the newest version."""
    try:
        version, notices = await engine.restore_version(conversation_id, version_id)
        return {"version": version, "notices": notices}

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Failed to restore version {version_id}")
        raise HTTPException(status_code=500, detail="Failed to restore version") from e


@router.post("/conversations/{conversation_id}/documents/{doc_type}/dismiss-stale")
async def dismiss_staleness(
    conversation_id: UUID,
    doc_type: DocumentType,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        return {"dismissed": await engine.dismiss_staleness(conversation_id, doc_type)}

    except DocSyncError as e:
        raise http_error(e) from e


# ============================================================================
# Generation
# ============================================================================


@router.post("/conversations/{conversation_id}/documents/{doc_type}/generate")
async def generate_document(
    conversation_id: UUID,
    doc_type: DocumentType,
    request: GenerateDocumentRequest,
    user_id: UUID = Query(..., description="User UUID"),
    engine: ConversationEngine = Depends(get_engine),
) -> StreamingResponse:
    """Stream a document generation as Server-Sent Events."""
    check_chat_rate_limit(user_id)
    try:
        session = await engine.prepare_document_generation(user_id, conversation_id, doc_type)
    except DocSyncError as e:
        raise http_error(e) from e

    return sse_response(engine.stream_document(user_id, session, doc_type, request.template_id))


@router.post("/conversations/{conversation_id}/documents/{doc_type}/template")
async def change_template(
    conversation_id: UUID,
    doc_type: DocumentType,
    request: ChangeTemplateRequest,
    user_id: UUID = Query(..., description="User UUID"),
    engine: ConversationEngine = Depends(get_engine),
) -> StreamingResponse:
    """
    Switch a document's template and regenerate it.

    Returns 409 ``confirmation_required`` when the document has content and
    ``archive_current`` was not given.
    """
    check_chat_rate_limit(user_id)
    try:
        session = await engine.prepare_template_change(
            user_id, conversation_id, doc_type, request.archive_current
        )
    except DocSyncError as e:
        raise http_error(e) from e

    return sse_response(
        engine.stream_template_change(
            user_id, session, doc_type, request.template_id, request.archive_current
        )
    )


@router.post("/conversations/{conversation_id}/maturity-check")
async def check_maturity(
    conversation_id: UUID,
    user_id: UUID = Query(..., description="User UUID"),
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    check_chat_rate_limit(user_id)
    try:
        report, version, notices = await engine.check_maturity(user_id, conversation_id)
        return {
            "report": report.model_dump(by_alias=True),
            "version": version,
            "notices": notices,
        }

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Maturity check failed for {conversation_id}")
        raise HTTPException(status_code=500, detail="Maturity check failed") from e


@router.post("/conversations/{conversation_id}/backlog")
async def generate_backlog(
    conversation_id: UUID,
    user_id: UUID = Query(..., description="User UUID"),
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    check_chat_rate_limit(user_id)
    try:
        backlog, version, notices = await engine.generate_backlog(user_id, conversation_id)
        return {"backlog": backlog, "version": version, "notices": notices}

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Backlog generation failed for {conversation_id}")
        raise HTTPException(status_code=500, detail="Backlog generation failed") from e


# ============================================================================
# Templates
# ============================================================================


@router.get("/templates")
async def list_templates(
    doc_type: DocumentType = Query(..., description="Document type"),
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    if doc_type not in STREAMABLE_TYPES:
        return {"templates": []}
    return {"templates": await engine.templates.available(doc_type)}
