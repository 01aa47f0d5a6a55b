"""Pydantic schemas for derived documents and their version history."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


# ============================================================================
# Enums & dependency graph
# ============================================================================


class DocumentType(str, Enum):
    """Fixed set of artifacts a conversation can produce."""
    REQUEST = "request"
    ANALYSIS = "analysis"
    TEST = "test"
    TRACEABILITY = "traceability"
    DIAGRAM = "diagram"
    MATURITY_REPORT = "maturity_report"
    BACKLOG = "backlog"


# upstream -> direct dependents. Not user-editable.
DEPENDENCY_GRAPH: dict[DocumentType, frozenset[DocumentType]] = {
    DocumentType.ANALYSIS: frozenset(
        {DocumentType.TEST, DocumentType.TRACEABILITY, DocumentType.DIAGRAM}
    ),
    DocumentType.TEST: frozenset({DocumentType.TRACEABILITY}),
    DocumentType.REQUEST: frozenset(),
    DocumentType.TRACEABILITY: frozenset(),
    DocumentType.DIAGRAM: frozenset(),
    DocumentType.MATURITY_REPORT: frozenset(),
    DocumentType.BACKLOG: frozenset(),
}

# Types whose staleness is judged by the impact oracle on an analysis change
ORACLE_JUDGED_TYPES: tuple[DocumentType, ...] = (
    DocumentType.TEST,
    DocumentType.TRACEABILITY,
    DocumentType.DIAGRAM,
)

# Types whose template can be swapped by the user
TEMPLATED_TYPES: frozenset[DocumentType] = frozenset(
    {DocumentType.ANALYSIS, DocumentType.TEST, DocumentType.TRACEABILITY}
)

# Types produced by streamed generation jobs
STREAMABLE_TYPES: frozenset[DocumentType] = frozenset(
    {
        DocumentType.ANALYSIS,
        DocumentType.TEST,
        DocumentType.TRACEABILITY,
        DocumentType.DIAGRAM,
    }
)


def upstream_of(doc_type: DocumentType) -> list[DocumentType]:
    """Return the document types that ``doc_type`` is derived from."""
    return [src for src, deps in DEPENDENCY_GRAPH.items() if doc_type in deps]


# ============================================================================
# Records
# ============================================================================


class DocumentVersion(BaseModel):
    """Immutable, numbered snapshot of a document's content."""

    id: UUID
    conversation_id: UUID
    document_type: DocumentType
    version_number: int = Field(..., ge=1)
    content: str
    reason_for_change: str
    template_id: Optional[str] = None
    tokens_used: int = 0
    created_at: Optional[datetime] = None


class Document(BaseModel):
    """Current head state for one (conversation, document type)."""

    id: Optional[UUID] = None
    conversation_id: UUID
    document_type: DocumentType
    content: str = ""
    current_version_id: Optional[UUID] = None
    is_stale: bool = False
    template_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def has_content(self) -> bool:
        return bool(self.content and self.content.strip())


class Template(BaseModel):
    """Prompt template used to generate a document type."""

    id: str
    name: str
    document_type: DocumentType
    prompt: str
    is_system_template: bool = False


# ============================================================================
# Provider payloads
# ============================================================================


class ImpactAssessment(BaseModel):
    """Impact oracle verdict: which derived documents an analysis change affects."""

    test: bool = False
    traceability: bool = False
    diagram: bool = False
    summary: str = ""

    def flagged(self) -> list[DocumentType]:
        return [t for t in ORACLE_JUDGED_TYPES if getattr(self, t.value)]


class MaturityScores(BaseModel):
    comprehensiveness: float = 0
    clarity: float = 0
    consistency: float = 0
    testability: float = 0
    completeness: float = 0


class MaturityReport(BaseModel):
    """Assessment of whether the analysis is mature enough to move on."""

    is_sufficient: bool = Field(..., alias="isSufficient")
    summary: str
    missing_topics: list[str] = Field(default_factory=list, alias="missingTopics")
    suggested_questions: list[str] = Field(default_factory=list, alias="suggestedQuestions")
    scores: MaturityScores = Field(default_factory=MaturityScores)
    overall_score: float = Field(default=0, alias="overallScore")
    justification: str = ""
    maturity_level: str = "weak"

    model_config = {"populate_by_name": True}


class BacklogSuggestion(BaseModel):
    """One node in a generated backlog tree (epic → story → task)."""

    type: str = "task"
    title: str = "Untitled"
    description: str = ""
    priority: str = "medium"
    children: list["BacklogSuggestion"] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def merge_legacy_items(cls, data: Any) -> Any:
        # Models sometimes nest children under "items"
        if isinstance(data, dict) and data.get("items"):
            data = dict(data)
            data["children"] = list(data.get("children") or []) + list(data.pop("items"))
        return data


class BacklogResponse(BaseModel):
    """Backlog generation output, tolerant of the keys models actually emit."""

    reasoning: str = ""
    suggestions: list[BacklogSuggestion] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def merge_root_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            merged = list(data.get("suggestions") or [])
            merged += list(data.get("backlog") or [])
            merged += list(data.get("items") or [])
            return {"reasoning": data.get("reasoning") or "", "suggestions": merged}
        return data


class RequestDocument(BaseModel):
    """Structured request summary saved as the ``request`` document."""

    title: str
    requester: str = ""
    current_problem: str = ""
    purpose: str = ""
    in_scope: list[str] = Field(default_factory=list)
    out_of_scope: list[str] = Field(default_factory=list)
    expected_benefits: list[str] = Field(default_factory=list)
