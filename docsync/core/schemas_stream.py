"""Stream chunk variants emitted by the AI provider during a generation job.

The union is closed: the reconciler matches on every variant and ends with
``assert_never``, so a new chunk kind is a type-checked change.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from docsync.core.schemas_chat import ThoughtProcess
from docsync.core.schemas_documents import DocumentType


class TextChunk(BaseModel):
    type: Literal["text_chunk"] = "text_chunk"
    text: str


class DocStreamChunk(BaseModel):
    type: Literal["doc_stream_chunk"] = "doc_stream_chunk"
    doc_type: DocumentType
    fragment: str


class ThoughtChunk(BaseModel):
    type: Literal["thought_chunk"] = "thought_chunk"
    thought: ThoughtProcess


class FunctionCallChunk(BaseModel):
    type: Literal["function_call"] = "function_call"
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class UsageUpdate(BaseModel):
    type: Literal["usage_update"] = "usage_update"
    amount: int = Field(..., ge=0)


class ErrorChunk(BaseModel):
    type: Literal["error"] = "error"
    message: str


StreamChunk = Annotated[
    Union[TextChunk, DocStreamChunk, ThoughtChunk, FunctionCallChunk, UsageUpdate, ErrorChunk],
    Field(discriminator="type"),
]

_chunk_adapter: TypeAdapter[StreamChunk] = TypeAdapter(StreamChunk)


def parse_chunk(data: dict[str, Any]) -> StreamChunk:
    """Validate a raw dict into the matching chunk variant."""
    return _chunk_adapter.validate_python(data)
