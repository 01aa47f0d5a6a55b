"""
Tests for staleness propagation and the document commit path.

Covers:
- propagate flags only documents that exist
- oracle and store failures leave flags untouched
- dismiss clears a flag, commit clears a flag
- DocumentWriter only judges real analysis changes
- assess_document_impact parses the provider verdict
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

import pytest

from docsync.core.document_writer import DocumentWriter
from docsync.core.errors import PersistenceError
from docsync.core.schemas_documents import DocumentType, ImpactAssessment
from docsync.core.staleness import StalenessPropagator
from docsync.core.version_store import VersionStore

CONV_ID = UUID("00000000-0000-0000-0000-0000000000c2")

ALL_FLAGGED = ImpactAssessment(test=True, traceability=True, diagram=True, summary="big change")


def _is_stale(fake_supabase, doc_type: DocumentType) -> bool:
    for row in fake_supabase.rows("documents"):
        if row["document_type"] == doc_type.value:
            return row["is_stale"]
    raise AssertionError(f"no {doc_type.value} head")


async def _seed(store: VersionStore, *doc_types: DocumentType) -> None:
    for doc_type in doc_types:
        await store.commit_version(CONV_ID, doc_type, f"{doc_type.value} v1", "generated by assistant")


# ──────────────────────────────────────────────────────────────────────
# StalenessPropagator
# ──────────────────────────────────────────────────────────────────────


class TestPropagate:
    @pytest.mark.asyncio
    async def test_flags_only_existing_documents(self, fake_supabase):
        store = VersionStore()
        await _seed(store, DocumentType.ANALYSIS, DocumentType.TEST)
        propagator = StalenessPropagator(oracle=AsyncMock(return_value=ALL_FLAGGED))

        flagged = await propagator.propagate(CONV_ID, "old", "new")

        assert flagged == [DocumentType.TEST]
        assert _is_stale(fake_supabase, DocumentType.TEST) is True
        assert _is_stale(fake_supabase, DocumentType.ANALYSIS) is False

    @pytest.mark.asyncio
    async def test_unflagged_documents_untouched(self, fake_supabase):
        store = VersionStore()
        await _seed(store, DocumentType.TEST, DocumentType.DIAGRAM)
        oracle = AsyncMock(return_value=ImpactAssessment(diagram=True))

        flagged = await StalenessPropagator(oracle=oracle).propagate(CONV_ID, "old", "new")

        assert flagged == [DocumentType.DIAGRAM]
        assert _is_stale(fake_supabase, DocumentType.TEST) is False

    @pytest.mark.asyncio
    async def test_oracle_failure_is_swallowed(self, fake_supabase):
        store = VersionStore()
        await _seed(store, DocumentType.TEST)
        oracle = AsyncMock(side_effect=RuntimeError("provider down"))

        flagged = await StalenessPropagator(oracle=oracle).propagate(CONV_ID, "old", "new")

        assert flagged == []
        assert _is_stale(fake_supabase, DocumentType.TEST) is False

    @pytest.mark.asyncio
    async def test_store_failure_skips_that_document(self, fake_supabase):
        store = VersionStore()
        await _seed(store, DocumentType.TEST)
        fake_supabase.fail("documents", "update", times=1)

        flagged = await StalenessPropagator(oracle=AsyncMock(return_value=ALL_FLAGGED)).propagate(
            CONV_ID, "old", "new"
        )

        assert flagged == []


class TestDismiss:
    @pytest.mark.asyncio
    async def test_dismiss_clears_flag(self, fake_supabase):
        store = VersionStore()
        await _seed(store, DocumentType.TEST)
        propagator = StalenessPropagator(oracle=AsyncMock(return_value=ALL_FLAGGED))
        await propagator.propagate(CONV_ID, "old", "new")

        assert await propagator.dismiss(CONV_ID, DocumentType.TEST) is True
        assert _is_stale(fake_supabase, DocumentType.TEST) is False

    @pytest.mark.asyncio
    async def test_dismiss_missing_document_returns_false(self, fake_supabase):
        propagator = StalenessPropagator(oracle=AsyncMock())
        assert await propagator.dismiss(CONV_ID, DocumentType.DIAGRAM) is False

    @pytest.mark.asyncio
    async def test_dismiss_store_failure_raises(self, fake_supabase):
        fake_supabase.fail("documents", "update")
        propagator = StalenessPropagator(oracle=AsyncMock())

        with pytest.raises(PersistenceError):
            await propagator.dismiss(CONV_ID, DocumentType.TEST)


# ──────────────────────────────────────────────────────────────────────
# DocumentWriter
# ──────────────────────────────────────────────────────────────────────


class TestDocumentWriter:
    @pytest.mark.asyncio
    async def test_analysis_change_flags_dependents(self, fake_supabase):
        store = VersionStore()
        oracle = AsyncMock(return_value=ALL_FLAGGED)
        writer = DocumentWriter(store, StalenessPropagator(oracle=oracle))
        await writer.commit(CONV_ID, DocumentType.ANALYSIS, "first analysis", "generated by assistant")
        await writer.commit(CONV_ID, DocumentType.TEST, "tests", "generated by assistant")

        await writer.commit(CONV_ID, DocumentType.ANALYSIS, "second analysis", "edited by user")

        oracle.assert_awaited_once_with("first analysis", "second analysis")
        assert _is_stale(fake_supabase, DocumentType.TEST) is True

    @pytest.mark.asyncio
    async def test_first_analysis_is_not_judged(self, fake_supabase):
        oracle = AsyncMock(return_value=ALL_FLAGGED)
        writer = DocumentWriter(VersionStore(), StalenessPropagator(oracle=oracle))

        await writer.commit(CONV_ID, DocumentType.ANALYSIS, "first", "generated by assistant")

        oracle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_identical_analysis_is_not_judged(self, fake_supabase):
        oracle = AsyncMock(return_value=ALL_FLAGGED)
        writer = DocumentWriter(VersionStore(), StalenessPropagator(oracle=oracle))
        await writer.commit(CONV_ID, DocumentType.ANALYSIS, "same", "generated by assistant")

        await writer.commit(CONV_ID, DocumentType.ANALYSIS, "same", "archived before template change")

        oracle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_analysis_commit_is_not_judged(self, fake_supabase):
        oracle = AsyncMock(return_value=ALL_FLAGGED)
        writer = DocumentWriter(VersionStore(), StalenessPropagator(oracle=oracle))
        await writer.commit(CONV_ID, DocumentType.TEST, "one", "edited by user")
        await writer.commit(CONV_ID, DocumentType.TEST, "two", "edited by user")

        oracle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_commit_clears_stale_flag(self, fake_supabase):
        store = VersionStore()
        writer = DocumentWriter(store, StalenessPropagator(oracle=AsyncMock(return_value=ALL_FLAGGED)))
        await writer.commit(CONV_ID, DocumentType.ANALYSIS, "a1", "generated by assistant")
        await writer.commit(CONV_ID, DocumentType.DIAGRAM, "graph TD", "generated by assistant")
        await writer.commit(CONV_ID, DocumentType.ANALYSIS, "a2", "edited by user")
        assert _is_stale(fake_supabase, DocumentType.DIAGRAM) is True

        await writer.commit(CONV_ID, DocumentType.DIAGRAM, "graph LR", "generated by assistant")

        assert _is_stale(fake_supabase, DocumentType.DIAGRAM) is False

    @pytest.mark.asyncio
    async def test_restore_of_analysis_is_judged(self, fake_supabase):
        store = VersionStore()
        oracle = AsyncMock(return_value=ImpactAssessment())
        writer = DocumentWriter(store, StalenessPropagator(oracle=oracle))
        v1 = await writer.commit(CONV_ID, DocumentType.ANALYSIS, "a1", "generated by assistant")
        await writer.commit(CONV_ID, DocumentType.ANALYSIS, "a2", "edited by user")

        restored = await writer.restore(v1)

        assert restored.version_number == 3
        assert oracle.await_args_list[-1].args == ("a2", "a1")


# ──────────────────────────────────────────────────────────────────────
# Impact oracle
# ──────────────────────────────────────────────────────────────────────


class TestAssessDocumentImpact:
    @pytest.mark.asyncio
    async def test_parses_fenced_verdict(self, fake_supabase):
        from docsync.chains.impact_oracle import assess_document_impact

        response = SimpleNamespace(
            content=[
                SimpleNamespace(
                    type="text",
                    text='```json\n{"test": true, "traceability": false, "diagram": true, "summary": "x"}\n```',
                )
            ],
            usage=SimpleNamespace(input_tokens=120, output_tokens=30),
        )
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=response)

        with patch("docsync.chains.impact_oracle.get_anthropic_client", return_value=client):
            assessment = await assess_document_impact("old", "new")

        assert assessment.flagged() == [DocumentType.TEST, DocumentType.DIAGRAM]
        assert fake_supabase.rows("llm_usage_log")[0]["workflow"] == "staleness"
