"""
Tests for the Streaming Reconciler.

Covers:
- chunk routing (text, document fragments, thoughts, usage)
- chunks for cancelled or finalizing jobs are discarded
- finalize commits buffers once; cancelled jobs commit nothing
- one function call per turn; function errors attach to the message
"""

from unittest.mock import AsyncMock
from uuid import UUID

import pytest

from docsync.chains.chat_tools import ToolContext
from docsync.core.document_writer import DocumentWriter
from docsync.core.errors import FunctionCallError, ProviderStreamError
from docsync.core.generation_job import GenerationJob, JobRegistry
from docsync.core.reconciler import GENERATED_REASON, ReconcileContext, StreamingReconciler
from docsync.core.schemas_chat import Message, MessageRole, ThoughtProcess
from docsync.core.schemas_documents import DocumentType
from docsync.core.schemas_stream import (
    DocStreamChunk,
    ErrorChunk,
    FunctionCallChunk,
    TextChunk,
    ThoughtChunk,
    UsageUpdate,
)
from docsync.core.staleness import StalenessPropagator
from docsync.core.token_ledger import TokenLedger
from docsync.core.version_store import VersionStore

CONV_ID = UUID("00000000-0000-0000-0000-0000000000c3")
USER_ID = UUID("00000000-0000-0000-0000-0000000000a3")


@pytest.fixture
def writer():
    return DocumentWriter(VersionStore(), StalenessPropagator(oracle=AsyncMock()))


@pytest.fixture
def ctx():
    return ReconcileContext(ledger=TokenLedger(USER_ID, flush_delay=60))


def _assistant_message() -> Message:
    return Message(conversation_id=CONV_ID, role=MessageRole.ASSISTANT, is_streaming=True)


def _doc(fragment: str, doc_type: DocumentType = DocumentType.ANALYSIS) -> DocStreamChunk:
    return DocStreamChunk(doc_type=doc_type, fragment=fragment)


# ──────────────────────────────────────────────────────────────────────
# apply
# ──────────────────────────────────────────────────────────────────────


class TestApply:
    @pytest.mark.asyncio
    async def test_text_appends_to_message(self, writer, ctx):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID)
        message = _assistant_message()

        await reconciler.apply(job, TextChunk(text="Hello "), message, ctx)
        outcome = await reconciler.apply(job, TextChunk(text="there"), message, ctx)

        assert message.content == "Hello there"
        assert outcome.event == {"type": "text", "content": "there"}

    @pytest.mark.asyncio
    async def test_fragments_are_buffered_not_committed(self, writer, ctx, fake_supabase):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID, kind="document")

        await reconciler.apply(job, _doc("# A"), None, ctx)
        await reconciler.apply(job, _doc("\nbody"), None, ctx)

        assert job.buffered_content(DocumentType.ANALYSIS) == "# A\nbody"
        assert fake_supabase.rows("document_versions") == []

    @pytest.mark.asyncio
    async def test_thought_sets_message_trace(self, writer, ctx):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID)
        message = _assistant_message()
        thought = ThoughtProcess(title="Reviewing scope")

        outcome = await reconciler.apply(job, ThoughtChunk(thought=thought), message, ctx)

        assert message.thought == thought
        assert outcome.event["type"] == "thought"

    @pytest.mark.asyncio
    async def test_usage_reaches_ledger_and_job(self, writer, ctx):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID)

        await reconciler.apply(job, UsageUpdate(amount=250), None, ctx)

        assert job.tokens_used == 250
        assert ctx.ledger.conversation_total(CONV_ID) == 250

    @pytest.mark.asyncio
    async def test_error_chunk_raises(self, writer, ctx):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID)

        with pytest.raises(ProviderStreamError, match="overloaded"):
            await reconciler.apply(job, ErrorChunk(message="overloaded"), _assistant_message(), ctx)

    @pytest.mark.asyncio
    async def test_cancelled_job_discards_chunks(self, writer, ctx):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID)
        message = _assistant_message()
        job.token.cancel()

        text = await reconciler.apply(job, TextChunk(text="late"), message, ctx)
        doc = await reconciler.apply(job, _doc("late"), message, ctx)
        usage = await reconciler.apply(job, UsageUpdate(amount=5), message, ctx)

        assert not (text.applied or doc.applied or usage.applied)
        assert message.content == ""
        assert job.buffers == {}
        assert ctx.ledger.account_total == 0

    @pytest.mark.asyncio
    async def test_superseded_job_discards_chunks(self, writer, ctx):
        registry = JobRegistry()
        reconciler = StreamingReconciler(writer)
        old = registry.start(CONV_ID, kind="document")
        await reconciler.apply(old, _doc("partial"), None, ctx)

        new = registry.start(CONV_ID, kind="document")
        outcome = await reconciler.apply(old, _doc("more"), None, ctx)

        assert outcome.applied is False
        assert old.buffers == {}
        assert registry.get_active(CONV_ID) is new


# ──────────────────────────────────────────────────────────────────────
# function calls
# ──────────────────────────────────────────────────────────────────────


class TestFunctionCalls:
    def _tools_ctx(self, writer, job, ledger):
        return ToolContext(conversation_id=CONV_ID, job=job, writer=writer, ledger=ledger, provider=None)

    @pytest.mark.asyncio
    async def test_acknowledgment_appended_to_message(self, writer, ctx):
        executor = AsyncMock(return_value="Saved your request.")
        reconciler = StreamingReconciler(writer, tool_executor=executor)
        job = GenerationJob(conversation_id=CONV_ID)
        ctx.tools = self._tools_ctx(writer, job, ctx.ledger)
        message = _assistant_message()
        message.content = "Sure."

        outcome = await reconciler.apply(
            job, FunctionCallChunk(name="saveRequestSummary", args={"request_summary": "x"}), message, ctx
        )

        assert message.content == "Sure.\n\nSaved your request."
        assert message.acknowledgment == "Saved your request."
        assert outcome.event["type"] == "acknowledgment"
        executor.assert_awaited_once_with(ctx.tools, "saveRequestSummary", {"request_summary": "x"})

    @pytest.mark.asyncio
    async def test_only_first_call_per_turn_is_executed(self, writer, ctx):
        executor = AsyncMock(return_value="ok")
        reconciler = StreamingReconciler(writer, tool_executor=executor)
        job = GenerationJob(conversation_id=CONV_ID)
        ctx.tools = self._tools_ctx(writer, job, ctx.ledger)
        message = _assistant_message()

        await reconciler.apply(job, FunctionCallChunk(name="startTestGeneration"), message, ctx)
        second = await reconciler.apply(job, FunctionCallChunk(name="startAnalysisGeneration"), message, ctx)

        assert executor.await_count == 1
        assert second.applied is False

    @pytest.mark.asyncio
    async def test_function_error_attached_to_message(self, writer, ctx):
        executor = AsyncMock(side_effect=FunctionCallError("Generate the analysis document first."))
        reconciler = StreamingReconciler(writer, tool_executor=executor)
        job = GenerationJob(conversation_id=CONV_ID)
        ctx.tools = self._tools_ctx(writer, job, ctx.ledger)
        message = _assistant_message()

        outcome = await reconciler.apply(job, FunctionCallChunk(name="startTestGeneration"), message, ctx)

        assert message.error.name == "FunctionCallError"
        assert "analysis" in message.error.message
        assert outcome.event["type"] == "function_error"

    @pytest.mark.asyncio
    async def test_unknown_command_has_no_effect(self, writer, ctx):
        reconciler = StreamingReconciler(writer, tool_executor=AsyncMock(return_value=None))
        job = GenerationJob(conversation_id=CONV_ID)
        ctx.tools = self._tools_ctx(writer, job, ctx.ledger)
        message = _assistant_message()

        outcome = await reconciler.apply(job, FunctionCallChunk(name="launchRocket"), message, ctx)

        assert outcome.event is None
        assert message.content == ""


# ──────────────────────────────────────────────────────────────────────
# finalize
# ──────────────────────────────────────────────────────────────────────


class TestFinalize:
    @pytest.mark.asyncio
    async def test_commits_buffers_with_tokens_and_template(self, writer, ctx, fake_supabase):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID, kind="document", template_id="system-analysis")
        await reconciler.apply(job, _doc("# Analysis"), None, ctx)
        await reconciler.apply(job, UsageUpdate(amount=77), None, ctx)

        result = await reconciler.finalize(job)

        assert [v.version_number for v in result.versions] == [1]
        version = result.versions[0]
        assert version.content == "# Analysis"
        assert version.reason_for_change == GENERATED_REASON
        assert version.template_id == "system-analysis"
        assert version.tokens_used == 77

    @pytest.mark.asyncio
    async def test_finalize_is_a_barrier(self, writer, ctx):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID, kind="document")
        await reconciler.apply(job, _doc("body"), None, ctx)

        await reconciler.finalize(job)
        late = await reconciler.apply(job, _doc(" late"), None, ctx)

        assert late.applied is False
        assert job.buffers == {}

    @pytest.mark.asyncio
    async def test_cancelled_job_commits_nothing(self, writer, ctx, fake_supabase):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID, kind="document")
        await reconciler.apply(job, _doc("partial"), None, ctx)
        job.token.cancel()

        result = await reconciler.finalize(job)

        assert result.versions == []
        assert fake_supabase.rows("document_versions") == []

    @pytest.mark.asyncio
    async def test_empty_buffer_is_not_committed(self, writer, ctx, fake_supabase):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID, kind="document")
        await reconciler.apply(job, _doc("   "), None, ctx)

        result = await reconciler.finalize(job)

        assert result.versions == []

    @pytest.mark.asyncio
    async def test_diagram_fences_are_stripped(self, writer, ctx):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID, kind="document")
        await reconciler.apply(job, _doc("```mermaid\ngraph TD\n", DocumentType.DIAGRAM), None, ctx)
        await reconciler.apply(job, _doc("A-->B\n```", DocumentType.DIAGRAM), None, ctx)

        result = await reconciler.finalize(job)

        assert result.versions[0].content == "graph TD\nA-->B"

    @pytest.mark.asyncio
    async def test_version_write_failure_becomes_notice(self, writer, ctx, fake_supabase):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID, kind="document")
        await reconciler.apply(job, _doc("body"), None, ctx)
        fake_supabase.fail("document_versions", "insert")

        result = await reconciler.finalize(job)

        assert result.versions == []
        assert len(result.notices) == 1

    @pytest.mark.asyncio
    async def test_head_write_failure_keeps_version(self, writer, ctx, fake_supabase):
        reconciler = StreamingReconciler(writer)
        job = GenerationJob(conversation_id=CONV_ID, kind="document")
        await reconciler.apply(job, _doc("body"), None, ctx)
        fake_supabase.fail("documents", "upsert", times=1)

        result = await reconciler.finalize(job)

        assert [v.version_number for v in result.versions] == [1]
        assert len(result.notices) == 1
