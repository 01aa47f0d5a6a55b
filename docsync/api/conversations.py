"""API endpoints for conversations, chat turns and messages."""

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
from docsync.core.schemas_chat import Feedback

logger = get_logger(__name__)

router = APIRouter()


class StartConversationRequest(BaseModel):
    title: str | None = None
    initial_document: str | None = Field(
        None, description="Pasted request text, structured into the request document"
    )


class SendMessageRequest(BaseModel):
    text: str = Field(..., min_length=1)


class RenameConversationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


# ============================================================================
# Conversations
# ============================================================================


@router.post("/conversations")
async def start_conversation(
    request: StartConversationRequest,
    user_id: UUID = Query(..., description="User UUID"),
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """
    Start a new conversation.

    A pasted initial document is structured into the request document; the
    client then opens the first turn.
    """
    try:
        session, notices = await engine.start_conversation(
            user_id, title=request.title, initial_document=request.initial_document
        )
        documents = await engine.list_documents(session.id)
        return {"conversation": session.conversation, "documents": documents, "notices": notices}

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Failed to start conversation for user {user_id}")
        raise HTTPException(status_code=500, detail="Failed to start conversation") from e


@router.get("/conversations")
async def list_conversations(
    user_id: UUID = Query(..., description="User UUID"),
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        conversations = await engine.list_conversations(user_id)
        return {"conversations": conversations, "total": len(conversations)}

    except Exception as e:
        logger.exception(f"Failed to list conversations for user {user_id}")
        raise HTTPException(status_code=500, detail="Failed to list conversations") from e


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: UUID,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Conversation with its messages, current documents and compose draft."""
    try:
        return await engine.get_state(conversation_id)

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Failed to get conversation {conversation_id}")
        raise HTTPException(status_code=500, detail="Failed to get conversation") from e


@router.patch("/conversations/{conversation_id}")
async def rename_conversation(
    conversation_id: UUID,
    request: RenameConversationRequest,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        conversation, notices = await engine.rename_conversation(conversation_id, request.title)
        return {"conversation": conversation, "notices": notices}

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Failed to rename conversation {conversation_id}")
        raise HTTPException(status_code=500, detail="Failed to rename conversation") from e


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: UUID,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        notices = await engine.delete_conversation(conversation_id)
        return {"deleted": True, "notices": notices}

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Failed to delete conversation {conversation_id}")
        raise HTTPException(status_code=500, detail="Failed to delete conversation") from e


@router.post("/conversations/{conversation_id}/drain")
async def drain_token_ledger(
    conversation_id: UUID,
    user_id: UUID = Query(..., description="User UUID"),
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Persist pending token totals (call before navigating away)."""
    try:
        await engine.drain(user_id)
        return {"drained": True}

    except Exception as e:
        logger.exception(f"Failed to drain token ledger for user {user_id}")
        raise HTTPException(status_code=500, detail="Failed to drain token ledger") from e


# ============================================================================
# Turns
# ============================================================================


async def _open_turn(
    engine: ConversationEngine, user_id: UUID, conversation_id: UUID | None, text: str
) -> StreamingResponse:
    check_chat_rate_limit(user_id)
    try:
        session = await engine.prepare_turn(user_id, conversation_id, text)
    except DocSyncError as e:
        raise http_error(e) from e

    return sse_response(engine.stream_turn(user_id, session, text))


@router.post("/conversations/messages")
async def send_first_message(
    request: SendMessageRequest,
    user_id: UUID = Query(..., description="User UUID"),
    engine: ConversationEngine = Depends(get_engine),
) -> StreamingResponse:
    """Create a conversation from its first message and stream the turn."""
    return await _open_turn(engine, user_id, None, request.text)


@router.post("/conversations/{conversation_id}/messages")
async def send_message(
    conversation_id: UUID,
    request: SendMessageRequest,
    user_id: UUID = Query(..., description="User UUID"),
    engine: ConversationEngine = Depends(get_engine),
) -> StreamingResponse:
    """
    Send a user message and stream the assistant turn as Server-Sent Events.

    Event types: conversation, user_message, assistant_message, thought, text,
    acknowledgment, function_error, usage, document_chunk, document_committed,
    notice, turn_state, error, generation_started, generation_cancelled, done.
    """
    return await _open_turn(engine, user_id, conversation_id, request.text)


@router.post("/conversations/{conversation_id}/stop")
async def stop_generation(
    conversation_id: UUID,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    return {"stopped": engine.stop(conversation_id)}


@router.post("/conversations/{conversation_id}/messages/{message_id}/retry")
async def retry_message(
    conversation_id: UUID,
    message_id: UUID,
    user_id: UUID = Query(..., description="User UUID"),
    engine: ConversationEngine = Depends(get_engine),
) -> StreamingResponse:
    """Drop a failed assistant message and resubmit the user message before it."""
    check_chat_rate_limit(user_id)
    try:
        await engine.check_token_limit(user_id)
        plan = await engine.prepare_retry(conversation_id, message_id)
    except DocSyncError as e:
        raise http_error(e) from e

    return sse_response(
        engine.stream_turn(user_id, plan.session, plan.text, is_retry=True, notices=plan.notices)
    )


@router.get("/conversations/{conversation_id}/messages/{message_id}/edit")
async def edit_message(
    conversation_id: UUID,
    message_id: UUID,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Return a previous user message as the compose draft."""
    try:
        draft = await engine.edit_message(conversation_id, message_id)
        return {"draft": draft}

    except DocSyncError as e:
        raise http_error(e) from e


@router.put("/conversations/{conversation_id}/messages/{message_id}/feedback")
async def update_feedback(
    conversation_id: UUID,
    message_id: UUID,
    feedback: Feedback,
    engine: ConversationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        message, notices = await engine.update_feedback(conversation_id, message_id, feedback)
        return {"message": message, "notices": notices}

    except DocSyncError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Failed to update feedback on message {message_id}")
        raise HTTPException(status_code=500, detail="Failed to update feedback") from e
