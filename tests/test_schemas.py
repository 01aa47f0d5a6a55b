"""Tests for stream, chat and document schemas."""

import pytest
from pydantic import ValidationError

from docsync.core.llm import _strip_llm_fences, parse_llm_json
from docsync.core.schemas_chat import ThinkingStep, ThoughtProcess, UserProfile
from docsync.core.schemas_documents import (
    BacklogResponse,
    DocumentType,
    ImpactAssessment,
    MaturityReport,
    upstream_of,
)
from docsync.core.schemas_stream import DocStreamChunk, FunctionCallChunk, UsageUpdate, parse_chunk


class TestStreamChunks:
    def test_parse_chunk_dispatches_on_type(self):
        chunk = parse_chunk({"type": "doc_stream_chunk", "doc_type": "test", "fragment": "TC1"})
        assert chunk == DocStreamChunk(doc_type=DocumentType.TEST, fragment="TC1")

    def test_function_call_args_default_empty(self):
        assert parse_chunk({"type": "function_call", "name": "startTestGeneration"}) == FunctionCallChunk(
            name="startTestGeneration"
        )

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_chunk({"type": "telepathy"})

    def test_negative_usage_rejected(self):
        with pytest.raises(ValidationError):
            UsageUpdate(amount=-5)


class TestDependencyGraph:
    def test_upstream_of(self):
        assert upstream_of(DocumentType.ANALYSIS) == []
        assert upstream_of(DocumentType.DIAGRAM) == [DocumentType.ANALYSIS]
        assert set(upstream_of(DocumentType.TRACEABILITY)) == {DocumentType.ANALYSIS, DocumentType.TEST}

    def test_impact_flags(self):
        assert ImpactAssessment(traceability=True).flagged() == [DocumentType.TRACEABILITY]


class TestProviderPayloads:
    def test_maturity_report_accepts_camel_case(self):
        report = parse_llm_json(
            '{"isSufficient": true, "summary": "ready", "overallScore": 82}', MaturityReport
        )
        assert report.is_sufficient is True
        assert report.overall_score == 82

    def test_backlog_merges_root_keys(self):
        backlog = BacklogResponse.model_validate(
            {
                "suggestions": [{"title": "A"}],
                "items": [{"title": "B", "items": [{"title": "B.1"}]}],
            }
        )
        assert [s.title for s in backlog.suggestions] == ["A", "B"]
        assert backlog.suggestions[1].children[0].title == "B.1"

    def test_strip_mermaid_fence(self):
        assert _strip_llm_fences("```mermaid\ngraph TD\nA-->B\n```") == "graph TD\nA-->B"


class TestChatSchemas:
    def test_closed_out_completes_unfinished_steps(self):
        thought = ThoughtProcess(
            title="t",
            steps=[
                ThinkingStep(id="1", name="a", status="in_progress"),
                ThinkingStep(id="2", name="b", status="error"),
                ThinkingStep(id="3", name="c"),
            ],
        )

        closed = thought.closed_out()

        assert [s.status for s in closed.steps] == ["completed", "error", "completed"]
        assert thought.steps[0].status == "in_progress"

    def test_paid_plans_have_no_limit(self):
        profile = UserProfile(id="00000000-0000-0000-0000-000000000001", plan="pro", tokens_used=10, token_limit=5)
        assert profile.is_over_limit is False
