"""Shared response helpers: SSE framing and engine error mapping."""

import json
from contextlib import aclosing
from typing import Any, AsyncGenerator, AsyncIterator

from fastapi import HTTPException
from fastapi.responses import StreamingResponse

from docsync.core.errors import (
    ConfirmationRequired,
    DocSyncError,
    NotFoundError,
    PersistenceError,
    PreconditionError,
    ProviderStreamError,
    TokenLimitExceeded,
)
from docsync.core.logging import get_logger

logger = get_logger(__name__)

_STATUS_BY_ERROR: list[tuple[type[DocSyncError], int]] = [
    (NotFoundError, 404),
    (TokenLimitExceeded, 402),
    (ConfirmationRequired, 409),
    (PreconditionError, 409),
    (PersistenceError, 503),
    (ProviderStreamError, 502),
]


def http_error(error: DocSyncError) -> HTTPException:
    """Map an engine error to the HTTP status the client should see."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            break
    else:
        status_code = 400

    if isinstance(error, ConfirmationRequired):
        return HTTPException(
            status_code=status_code,
            detail={"code": "confirmation_required", "message": str(error)},
        )
    return HTTPException(status_code=status_code, detail=str(error))


def _sse_event(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data, default=str)}\n\n"


async def _sse_stream(events: AsyncIterator[dict[str, Any]]) -> AsyncGenerator[str, None]:
    try:
        async with aclosing(events) as stream:
            async for event in stream:
                yield _sse_event(event)
    except Exception as e:
        logger.error(f"Error in event stream: {e}", exc_info=True)
        yield _sse_event({"type": "error", "message": str(e), "retryable": False})


def sse_response(events: AsyncIterator[dict[str, Any]]) -> StreamingResponse:
    """Wrap an engine event stream as Server-Sent Events."""
    return StreamingResponse(
        _sse_stream(events),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
