"""
Single commit path for document content.

Every engine-level content change (stream finalize, user edit, restore,
template archive/regeneration, request summary, maturity report, backlog)
goes through ``DocumentWriter`` so that an ``analysis`` change always reaches
the Staleness Propagator.
"""

from typing import Any
from uuid import UUID

from docsync.core.errors import DocumentHeadWriteError
from docsync.core.logging import get_logger
from docsync.core.schemas_documents import Document, DocumentType, DocumentVersion
from docsync.core.staleness import StalenessPropagator
from docsync.core.version_store import VersionStore

logger = get_logger(__name__)


class DocumentWriter:
    """Version Store commits followed by staleness propagation for analysis changes."""

    def __init__(self, version_store: VersionStore, propagator: StalenessPropagator):
        self.version_store = version_store
        self.propagator = propagator

    async def commit(
        self,
        conversation_id: UUID,
        doc_type: DocumentType,
        content: Any,
        reason: str,
        template_id: str | None = None,
        tokens_used: int = 0,
    ) -> DocumentVersion:
        """
        Commit a new version and propagate staleness if the analysis changed.

        Raises:
            PersistenceError: If the version could not be written
            DocumentHeadWriteError: If the version was written but the head was not
                (propagation still runs; ``error.version`` is the new version)
        """
        previous = await self._previous_analysis(conversation_id, doc_type)

        try:
            version = await self.version_store.commit_version(
                conversation_id,
                doc_type,
                content,
                reason,
                template_id=template_id,
                tokens_used=tokens_used,
            )
        except DocumentHeadWriteError as e:
            await self._propagate(previous, e.version)
            raise

        await self._propagate(previous, version)
        return version

    async def restore(self, version: DocumentVersion) -> DocumentVersion:
        """Commit an old version's content as the newest version."""
        previous = await self._previous_analysis(version.conversation_id, version.document_type)

        try:
            restored = await self.version_store.restore_version(version)
        except DocumentHeadWriteError as e:
            await self._propagate(previous, e.version)
            raise

        await self._propagate(previous, restored)
        return restored

    async def _previous_analysis(
        self, conversation_id: UUID, doc_type: DocumentType
    ) -> Document | None:
        if doc_type is not DocumentType.ANALYSIS:
            return None
        try:
            return await self.version_store.get_document(conversation_id, doc_type)
        except Exception as e:
            logger.warning(
                f"Could not read previous analysis, staleness will not be judged: {e}",
                extra={"conversation_id": str(conversation_id)},
            )
            return None

    async def _propagate(self, previous: Document | None, version: DocumentVersion) -> None:
        # First analysis ever, or an identical commit (e.g. archive): nothing to judge
        if previous is None or not previous.has_content:
            return
        if previous.content == version.content:
            return
        await self.propagator.propagate(version.conversation_id, previous.content, version.content)
