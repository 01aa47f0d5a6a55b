"""
Version Store.

Append-only version history per (conversation, document type) plus the
document head that points at the current version.

Writes are two non-atomic store calls (version insert, then head upsert).
When the second one fails the version is kept and the head is repaired on
the next read by re-pointing it at the latest version.

Usage:
    from docsync.core.version_store import VersionStore

    store = VersionStore()

    version = await store.commit_version(conversation_id, DocumentType.ANALYSIS, content, "edited")
    restored = await store.restore_version(old_version)
    head = await store.get_document(conversation_id, DocumentType.ANALYSIS)
"""

import asyncio
import json
from typing import Any
from uuid import UUID

from docsync.core.errors import DocumentHeadWriteError, NotFoundError, PersistenceError
from docsync.core.logging import get_logger
from docsync.core.schemas_documents import (
    Document,
    DocumentType,
    DocumentVersion,
    upstream_of,
)
from docsync.db import document_versions as versions_db
from docsync.db import documents as documents_db

logger = get_logger(__name__)


def serialize_content(content: Any) -> str:
    """Store structured payloads as JSON, strings as-is."""
    if isinstance(content, str):
        return content
    if hasattr(content, "model_dump"):
        content = content.model_dump(by_alias=True)
    return json.dumps(content, ensure_ascii=False)


class VersionStore:
    """
    Serialization point for every document content change.

    Streaming finalize, template-change regeneration, restores and user edits
    all commit through ``commit_version``; one lock per (conversation, type)
    keeps version numbers contiguous.
    """

    def __init__(self):
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, conversation_id: UUID, doc_type: DocumentType) -> asyncio.Lock:
        key = (str(conversation_id), doc_type.value)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # =========================================================================
    # Writes
    # =========================================================================

    async def commit_version(
        self,
        conversation_id: UUID,
        doc_type: DocumentType,
        content: Any,
        reason: str,
        template_id: str | None = None,
        tokens_used: int = 0,
    ) -> DocumentVersion:
        """
        Append a version and point the document head at it.

        Args:
            conversation_id: Conversation UUID
            doc_type: Document type
            content: New content (structured payloads are JSON-encoded)
            reason: Human-readable reason for change
            template_id: Template used to produce the content
            tokens_used: Tokens the generation consumed

        Returns:
            The committed DocumentVersion

        Raises:
            PersistenceError: If the version could not be written
            DocumentHeadWriteError: If the version was written but the head was not
        """
        content_str = serialize_content(content)

        async with self._lock_for(conversation_id, doc_type):
            try:
                latest = await asyncio.to_thread(
                    versions_db.get_latest_document_version, conversation_id, doc_type.value
                )
                next_number = latest["version_number"] + 1 if latest else 1

                row = await asyncio.to_thread(
                    versions_db.insert_document_version,
                    conversation_id,
                    doc_type.value,
                    next_number,
                    content_str,
                    reason,
                    template_id,
                    tokens_used,
                )
            except Exception as e:
                raise PersistenceError(
                    f"Document version could not be saved: {e}"
                ) from e

            version = DocumentVersion.model_validate(row)

            try:
                await asyncio.to_thread(
                    documents_db.upsert_document,
                    conversation_id,
                    doc_type.value,
                    content_str,
                    version.id,
                    template_id,
                )
            except Exception as e:
                logger.warning(
                    f"{doc_type.value} v{version.version_number} saved but head update failed; "
                    f"will repair on next read: {e}",
                    extra={"conversation_id": str(conversation_id)},
                )
                raise DocumentHeadWriteError(
                    f"Document saved as v{version.version_number} but could not be made current",
                    version,
                ) from e

        logger.info(
            f"Committed {doc_type.value} v{version.version_number} ({reason})",
            extra={"conversation_id": str(conversation_id)},
        )
        return version

    async def restore_version(self, version: DocumentVersion) -> DocumentVersion:
        """Commit a copy of an old version as the newest version."""
        return await self.commit_version(
            version.conversation_id,
            version.document_type,
            version.content,
            f"restored to v{version.version_number}",
            template_id=version.template_id,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_document(
        self, conversation_id: UUID, doc_type: DocumentType
    ) -> Document | None:
        """
        Get the current document head, repairing a dangling pointer.

        Returns:
            Document, or None if the type has never been committed
        """
        head = await asyncio.to_thread(documents_db.get_document, conversation_id, doc_type.value)
        latest = await asyncio.to_thread(
            versions_db.get_latest_document_version, conversation_id, doc_type.value
        )

        if latest is None:
            return Document.model_validate(head) if head else None

        if head is not None and head.get("current_version_id") == str(latest["id"]):
            return Document.model_validate(head)

        return await self._repair_head(conversation_id, doc_type, head, latest)

    async def _repair_head(
        self,
        conversation_id: UUID,
        doc_type: DocumentType,
        head: dict[str, Any] | None,
        latest: dict[str, Any],
    ) -> Document:
        logger.warning(
            f"Repairing {doc_type.value} head -> v{latest['version_number']}",
            extra={"conversation_id": str(conversation_id)},
        )
        repaired = Document(
            id=head.get("id") if head else None,
            conversation_id=conversation_id,
            document_type=doc_type,
            content=latest["content"],
            current_version_id=latest["id"],
            is_stale=False,
            template_id=latest.get("template_id"),
        )
        try:
            row = await asyncio.to_thread(
                documents_db.upsert_document,
                conversation_id,
                doc_type.value,
                latest["content"],
                latest["id"],
                latest.get("template_id"),
            )
            return Document.model_validate(row)
        except Exception as e:
            # Serve the repaired view anyway; the next read retries the write
            logger.error(
                f"Head repair for {doc_type.value} failed: {e}",
                extra={"conversation_id": str(conversation_id)},
            )
            return repaired

    async def list_documents(self, conversation_id: UUID) -> dict[DocumentType, Document]:
        """Get every existing document head for a conversation."""
        documents: dict[DocumentType, Document] = {}
        for doc_type in DocumentType:
            document = await self.get_document(conversation_id, doc_type)
            if document is not None:
                documents[doc_type] = document
        return documents

    async def list_versions(
        self, conversation_id: UUID, doc_type: DocumentType
    ) -> list[DocumentVersion]:
        """Version history for one document type, oldest first."""
        rows = await asyncio.to_thread(
            versions_db.list_document_versions, conversation_id, doc_type.value
        )
        return [DocumentVersion.model_validate(r) for r in rows]

    async def get_version(self, version_id: UUID) -> DocumentVersion:
        """Get a single version or raise NotFoundError."""
        row = await asyncio.to_thread(versions_db.get_document_version, version_id)
        if not row:
            raise NotFoundError(f"Document version {version_id} not found")
        return DocumentVersion.model_validate(row)

    async def missing_upstream(
        self, conversation_id: UUID, doc_type: DocumentType
    ) -> list[DocumentType]:
        """Upstream document types that have no content yet."""
        missing = []
        for upstream in upstream_of(doc_type):
            document = await self.get_document(conversation_id, upstream)
            if document is None or not document.has_content:
                missing.append(upstream)
        return missing
