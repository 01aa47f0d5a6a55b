"""What a tool handler can touch while a chat turn is streaming."""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from docsync.core.document_writer import DocumentWriter
from docsync.core.generation_job import GenerationJob
from docsync.core.token_ledger import TokenLedger


@dataclass
class ToolContext:
    conversation_id: UUID
    job: GenerationJob
    writer: DocumentWriter
    ledger: TokenLedger
    provider: Any
