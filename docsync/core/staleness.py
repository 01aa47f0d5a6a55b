"""
Staleness Propagator.

When the analysis document changes, the impact oracle decides which derived
documents (test, traceability, diagram) the change affects and those heads
are flagged stale. The flag is cleared only by committing a new version of
the document or by an explicit dismissal.

Propagation is best effort: oracle and store failures are logged and the
flags are left as they were.
"""

import asyncio
from typing import Awaitable, Callable
from uuid import UUID

from docsync.core.errors import PersistenceError
from docsync.core.logging import get_logger
from docsync.core.schemas_documents import DocumentType, ImpactAssessment
from docsync.db import documents as documents_db

logger = get_logger(__name__)

ImpactOracle = Callable[[str, str], Awaitable[ImpactAssessment]]


class StalenessPropagator:
    """Flags derived documents stale according to a pluggable impact oracle."""

    def __init__(self, oracle: ImpactOracle | None = None):
        if oracle is None:
            from docsync.chains.impact_oracle import assess_document_impact

            oracle = assess_document_impact
        self._oracle = oracle

    async def propagate(
        self, conversation_id: UUID, old_content: str, new_content: str
    ) -> list[DocumentType]:
        """
        Judge an analysis change and flag affected documents.

        Args:
            conversation_id: Conversation UUID
            old_content: Analysis content before the change
            new_content: Analysis content after the change

        Returns:
            Document types that were flagged stale (existing documents only)
        """
        try:
            assessment = await self._oracle(old_content, new_content)
        except Exception as e:
            logger.warning(
                f"Impact oracle failed, staleness unchanged: {e}",
                extra={"conversation_id": str(conversation_id)},
            )
            return []

        flagged: list[DocumentType] = []
        for doc_type in assessment.flagged():
            try:
                updated = await asyncio.to_thread(
                    documents_db.set_document_stale, conversation_id, doc_type.value, True
                )
            except Exception as e:
                logger.warning(
                    f"Could not flag {doc_type.value} stale: {e}",
                    extra={"conversation_id": str(conversation_id)},
                )
                continue
            if updated:
                flagged.append(doc_type)

        if flagged:
            logger.info(
                f"Flagged stale: {', '.join(t.value for t in flagged)}",
                extra={"conversation_id": str(conversation_id)},
            )
        return flagged

    async def dismiss(self, conversation_id: UUID, doc_type: DocumentType) -> bool:
        """
        Clear a staleness flag without regenerating.

        Raises:
            PersistenceError: If the store write fails
        """
        try:
            return await asyncio.to_thread(
                documents_db.set_document_stale, conversation_id, doc_type.value, False
            )
        except Exception as e:
            raise PersistenceError(f"Could not dismiss staleness for {doc_type.value}: {e}") from e
