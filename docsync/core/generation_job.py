"""
Generation jobs and the per-conversation job registry.

A job is one in-flight provider stream. It owns the document buffers that the
reconciler fills and a cooperative cancellation token that every chunk checks
before it is applied.
"""

from dataclasses import dataclass, field
from uuid import UUID, uuid4

from docsync.core.logging import get_logger
from docsync.core.schemas_documents import DocumentType

logger = get_logger(__name__)


class CancellationToken:
    """Cooperative cancellation flag. Once tripped it stays tripped."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class GenerationJob:
    """One provider stream for a conversation (chat turn or document generation)."""

    conversation_id: UUID
    kind: str = "chat"
    message_id: UUID | None = None
    template_id: str | None = None
    id: UUID = field(default_factory=uuid4)
    token: CancellationToken = field(default_factory=CancellationToken)
    buffers: dict[DocumentType, list[str]] = field(default_factory=dict)
    finalizing: bool = False
    function_call_handled: bool = False
    tokens_used: int = 0
    # Document generations requested by a function call, run after this job finalizes
    follow_ups: list[DocumentType] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def accepting(self) -> bool:
        """Whether chunks may still be applied to this job."""
        return not self.token.cancelled and not self.finalizing

    def buffer(self, doc_type: DocumentType, fragment: str) -> None:
        self.buffers.setdefault(doc_type, []).append(fragment)

    def buffered_content(self, doc_type: DocumentType) -> str:
        return "".join(self.buffers.get(doc_type, []))

    def drain_buffers(self) -> dict[DocumentType, str]:
        """Return every buffer's joined content and clear them."""
        contents = {doc_type: "".join(parts) for doc_type, parts in self.buffers.items()}
        self.buffers.clear()
        return contents

    def discard_buffers(self) -> None:
        self.buffers.clear()

    def request_follow_up(self, doc_type: DocumentType) -> None:
        if doc_type not in self.follow_ups:
            self.follow_ups.append(doc_type)


class JobRegistry:
    """At most one active job per conversation; starting a job cancels the previous one."""

    def __init__(self):
        self._active: dict[str, GenerationJob] = {}

    def start(
        self,
        conversation_id: UUID,
        kind: str = "chat",
        message_id: UUID | None = None,
        template_id: str | None = None,
    ) -> GenerationJob:
        key = str(conversation_id)
        previous = self._active.get(key)
        if previous is not None and not previous.cancelled:
            previous.token.cancel()
            previous.discard_buffers()
            logger.info(
                f"Cancelled {previous.kind} job {previous.id} superseded by new {kind} job",
                extra={"conversation_id": key, "job_id": str(previous.id)},
            )

        job = GenerationJob(
            conversation_id=conversation_id,
            kind=kind,
            message_id=message_id,
            template_id=template_id,
        )
        self._active[key] = job
        logger.debug(
            f"Started {kind} job",
            extra={"conversation_id": key, "job_id": str(job.id)},
        )
        return job

    def get_active(self, conversation_id: UUID) -> GenerationJob | None:
        return self._active.get(str(conversation_id))

    def cancel(self, conversation_id: UUID) -> bool:
        """Trip the active job's token. Returns False if nothing was running."""
        job = self._active.get(str(conversation_id))
        if job is None or job.cancelled:
            return False
        job.token.cancel()
        logger.info(
            f"Stop requested for {job.kind} job",
            extra={"conversation_id": str(conversation_id), "job_id": str(job.id)},
        )
        return True

    def release(self, job: GenerationJob) -> None:
        """Forget a finished job unless a newer one has already replaced it."""
        key = str(job.conversation_id)
        if self._active.get(key) is job:
            del self._active[key]
