"""saveRequestSummary: commit the request document mid-turn."""

from pydantic import BaseModel, Field

from docsync.chains.structure_request import structure_request
from docsync.core.errors import DocumentHeadWriteError, FunctionCallError, PersistenceError
from docsync.core.logging import get_logger
from docsync.core.schemas_documents import DocumentType

from .context import ToolContext

logger = get_logger(__name__)

REQUEST_SAVED_REASON = "request summary saved by assistant"


class SaveRequestSummaryArgs(BaseModel):
    request_summary: str = Field(..., min_length=1)


async def _save_request_summary(ctx: ToolContext, args: SaveRequestSummaryArgs) -> str:
    content, tokens = await structure_request(
        ctx.provider, args.request_summary, conversation_id=ctx.conversation_id
    )
    ctx.ledger.commit(tokens, conversation_id=ctx.conversation_id)

    try:
        await ctx.writer.commit(
            ctx.conversation_id,
            DocumentType.REQUEST,
            content,
            REQUEST_SAVED_REASON,
            tokens_used=tokens,
        )
    except DocumentHeadWriteError as e:
        # The version exists; the head is repaired on the next read
        logger.warning(str(e), extra={"conversation_id": str(ctx.conversation_id)})
    except PersistenceError as e:
        raise FunctionCallError(f"The request could not be saved: {e}") from e

    return (
        "I've saved your request as the Request document. "
        "You can review it in the workspace; shall we start on the analysis?"
    )
