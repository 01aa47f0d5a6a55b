"""
Streaming Reconciler.

Applies provider stream chunks to a generation job: chat text and metadata go
to the transient assistant message, document fragments go to the job's
buffers, usage goes to the Token Ledger and function calls go to the
dispatcher. ``finalize`` is the only place buffered documents reach the
Version Store.

Usage:
    reconciler = StreamingReconciler(writer)

    async for chunk in provider.stream_chat(...):
        outcome = await reconciler.apply(job, chunk, message, ctx)
        if outcome.event:
            yield outcome.event
    result = await reconciler.finalize(job)
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, assert_never

from docsync.chains.chat_tools import ToolContext, execute_tool
from docsync.core.document_writer import DocumentWriter
from docsync.core.errors import (
    DocumentHeadWriteError,
    FunctionCallError,
    PersistenceError,
    ProviderStreamError,
)
from docsync.core.generation_job import GenerationJob
from docsync.core.llm import _strip_llm_fences
from docsync.core.logging import get_logger
from docsync.core.schemas_chat import Message, MessageError
from docsync.core.schemas_documents import DocumentType, DocumentVersion
from docsync.core.schemas_stream import (
    DocStreamChunk,
    ErrorChunk,
    FunctionCallChunk,
    StreamChunk,
    TextChunk,
    ThoughtChunk,
    UsageUpdate,
)
from docsync.core.token_ledger import TokenLedger

logger = get_logger(__name__)

GENERATED_REASON = "generated by assistant"

ToolExecutor = Callable[[ToolContext, str, dict[str, Any]], Awaitable[str | None]]


@dataclass
class ReconcileContext:
    """Per-job collaborators the reconciler needs while applying chunks."""

    ledger: TokenLedger
    tools: ToolContext | None = None


@dataclass
class ChunkOutcome:
    applied: bool
    event: dict[str, Any] | None = None


@dataclass
class FinalizeResult:
    versions: list[DocumentVersion] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)


def _clean_content(doc_type: DocumentType, content: str) -> str:
    # Diagram generations sometimes wrap the Mermaid code in a fence
    if doc_type is DocumentType.DIAGRAM:
        return _strip_llm_fences(content)
    return content


class StreamingReconciler:
    """Applies stream chunks to generation jobs and commits their buffers."""

    def __init__(self, writer: DocumentWriter, tool_executor: ToolExecutor = execute_tool):
        self.writer = writer
        self._execute_tool = tool_executor

    async def apply(
        self,
        job: GenerationJob,
        chunk: StreamChunk,
        message: Message | None,
        ctx: ReconcileContext,
    ) -> ChunkOutcome:
        """
        Apply one chunk.

        Chunks for a cancelled job, or arriving after finalize has begun, are
        discarded.

        Returns:
            ChunkOutcome with the client-facing event, if any

        Raises:
            ProviderStreamError: On an error chunk
        """
        if not job.accepting:
            logger.debug(
                f"Discarding {chunk.type} for inactive job",
                extra={"conversation_id": str(job.conversation_id), "job_id": str(job.id)},
            )
            return ChunkOutcome(applied=False)

        match chunk:
            case TextChunk(text=text):
                if message is None:
                    return ChunkOutcome(applied=False)
                message.content += text
                return ChunkOutcome(applied=True, event={"type": "text", "content": text})

            case DocStreamChunk(doc_type=doc_type, fragment=fragment):
                job.buffer(doc_type, fragment)
                return ChunkOutcome(
                    applied=True,
                    event={"type": "document_chunk", "doc_type": doc_type.value, "content": fragment},
                )

            case ThoughtChunk(thought=thought):
                if message is None:
                    return ChunkOutcome(applied=False)
                message.thought = thought
                return ChunkOutcome(
                    applied=True,
                    event={"type": "thought", "thought": thought.model_dump(mode="json")},
                )

            case FunctionCallChunk(name=name, args=args):
                return await self._apply_function_call(job, name, args, message, ctx)

            case UsageUpdate(amount=amount):
                job.tokens_used += amount
                ctx.ledger.commit(amount, conversation_id=job.conversation_id)
                return ChunkOutcome(applied=True, event={"type": "usage", "amount": amount})

            case ErrorChunk(message=error_message):
                raise ProviderStreamError(error_message)

            case _:
                assert_never(chunk)

    async def _apply_function_call(
        self,
        job: GenerationJob,
        name: str,
        args: dict[str, Any],
        message: Message | None,
        ctx: ReconcileContext,
    ) -> ChunkOutcome:
        if message is None or ctx.tools is None:
            return ChunkOutcome(applied=False)

        if job.function_call_handled:
            logger.info(
                f"Ignoring additional function call {name}; one per turn",
                extra={"conversation_id": str(job.conversation_id), "job_id": str(job.id)},
            )
            return ChunkOutcome(applied=False)
        job.function_call_handled = True

        try:
            acknowledgment = await self._execute_tool(ctx.tools, name, args)
        except FunctionCallError as e:
            message.error = MessageError(name="FunctionCallError", message=str(e))
            return ChunkOutcome(
                applied=True,
                event={"type": "function_error", "name": name, "message": str(e)},
            )

        if not acknowledgment:
            return ChunkOutcome(applied=True)

        separator = "\n\n" if message.content.strip() else ""
        message.content += separator + acknowledgment
        message.acknowledgment = acknowledgment
        return ChunkOutcome(
            applied=True,
            event={"type": "acknowledgment", "name": name, "content": separator + acknowledgment},
        )

    async def finalize(self, job: GenerationJob) -> FinalizeResult:
        """
        Commit every non-empty buffer as a new version.

        Acts as a barrier: once it starts, further chunks for the job are
        discarded. A cancelled job's buffers are dropped without committing.
        """
        result = FinalizeResult()
        if job.cancelled:
            self.discard(job)
            return result

        job.finalizing = True
        contents = job.drain_buffers()

        for doc_type, content in contents.items():
            content = _clean_content(doc_type, content)
            if not content.strip():
                continue
            try:
                version = await self.writer.commit(
                    job.conversation_id,
                    doc_type,
                    content,
                    GENERATED_REASON,
                    template_id=job.template_id,
                    tokens_used=job.tokens_used,
                )
            except DocumentHeadWriteError as e:
                result.versions.append(e.version)
                result.notices.append(str(e))
                continue
            except PersistenceError as e:
                logger.error(
                    f"Finalize could not save {doc_type.value}: {e}",
                    extra={"conversation_id": str(job.conversation_id), "job_id": str(job.id)},
                )
                result.notices.append(str(e))
                continue
            result.versions.append(version)

        return result

    def discard(self, job: GenerationJob) -> None:
        """Drop a job's buffered documents without committing."""
        if job.buffers:
            logger.info(
                f"Discarding buffered {', '.join(t.value for t in job.buffers)}",
                extra={"conversation_id": str(job.conversation_id), "job_id": str(job.id)},
            )
        job.discard_buffers()
