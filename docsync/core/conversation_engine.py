"""
Conversation engine.

Drives the message state machine (pending -> streaming -> finalized | aborted
| errored) and every user action that changes documents. Turns and document
generations are async generators of client-facing event dicts; the API layer
turns them into SSE.

Each action that must fail up front (unknown conversation, token limit,
conversation creation, missing confirmation) has a ``prepare_*`` step that
raises before any event is produced.

Usage:
    engine = ConversationEngine()

    session = await engine.prepare_turn(user_id, conversation_id, text)
    async for event in engine.stream_turn(user_id, session, text):
        ...
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator
from uuid import UUID

from docsync.chains.chat_tools import ToolContext
from docsync.chains.provider import AnthropicProvider
from docsync.chains.structure_request import structure_request
from docsync.chains.summarize_change import summarize_change
from docsync.core.config import get_settings
from docsync.core.document_writer import DocumentWriter
from docsync.core.errors import (
    ConfirmationRequired,
    ConversationCreateError,
    DocumentHeadWriteError,
    GenerationCancelled,
    NotFoundError,
    PersistenceError,
    PreconditionError,
    ProviderStreamError,
    TokenLimitExceeded,
)
from docsync.core.generation_job import GenerationJob, JobRegistry
from docsync.core.llm import parse_llm_json
from docsync.core.logging import get_logger, log_with_context
from docsync.core.prompts import (
    BACKLOG_SYSTEM,
    BACKLOG_USER,
    MATURITY_SYSTEM,
    MATURITY_USER,
    render_template,
)
from docsync.core.reconciler import ReconcileContext, StreamingReconciler
from docsync.core.schemas_chat import (
    Conversation,
    Feedback,
    Message,
    MessageError,
    MessageRole,
    TurnState,
    UserProfile,
)
from docsync.core.schemas_documents import (
    STREAMABLE_TYPES,
    TEMPLATED_TYPES,
    BacklogResponse,
    Document,
    DocumentType,
    DocumentVersion,
    MaturityReport,
    Template,
)
from docsync.core.session_store import ConversationSession, SessionStore
from docsync.core.staleness import ImpactOracle, StalenessPropagator
from docsync.core.templates import TemplateCatalog
from docsync.core.token_ledger import TokenLedger
from docsync.core.version_store import VersionStore
from docsync.db import conversations as conversations_db
from docsync.db import messages as messages_db
from docsync.db import profiles as profiles_db

logger = get_logger(__name__)

DEFAULT_TITLE = "New Analysis"
TITLE_MAX_LENGTH = 60

EDIT_REASON = "edited by user"
ARCHIVE_REASON = "archived before template change"
INITIAL_DOCUMENT_REASON = "initial request document"
MATURITY_REASON = "maturity check"
BACKLOG_REASON = "backlog generated"


def derive_title(text: str) -> str:
    """Conversation title from the first line of the user's first message."""
    first_line = next((line.strip() for line in text.splitlines() if line.strip()), "")
    if not first_line:
        return DEFAULT_TITLE
    if len(first_line) > TITLE_MAX_LENGTH:
        return first_line[: TITLE_MAX_LENGTH - 3].rstrip() + "..."
    return first_line


def _notice(message: str) -> dict[str, Any]:
    return {"type": "notice", "message": message}


def _committed(version: DocumentVersion) -> dict[str, Any]:
    return {"type": "document_committed", "version": version.model_dump(mode="json")}


@dataclass
class RetryPlan:
    session: ConversationSession
    text: str
    notices: list[str] = field(default_factory=list)


class ConversationEngine:
    """Owns the stores and runs every conversation action."""

    def __init__(self, provider=None, oracle: ImpactOracle | None = None):
        self.settings = get_settings()
        self.provider = provider or AnthropicProvider()
        self.version_store = VersionStore()
        self.propagator = StalenessPropagator(oracle)
        self.writer = DocumentWriter(self.version_store, self.propagator)
        self.reconciler = StreamingReconciler(self.writer)
        self.jobs = JobRegistry()
        self.sessions = SessionStore()
        self.templates = TemplateCatalog()
        self._ledgers: dict[str, TokenLedger] = {}

    # =========================================================================
    # Accounts
    # =========================================================================

    async def ledger_for(self, user_id: UUID) -> TokenLedger:
        """The user's token ledger, seeded from the stored profile on first use."""
        key = str(user_id)
        ledger = self._ledgers.get(key)
        if ledger is None:
            try:
                row = await asyncio.to_thread(profiles_db.get_profile, user_id)
            except Exception as e:
                logger.warning(f"Could not load profile for {user_id}, starting ledger at 0: {e}")
                row = None
            ledger = TokenLedger(user_id, account_total=(row or {}).get("tokens_used", 0))
            self._ledgers[key] = ledger
        return ledger

    async def check_token_limit(self, user_id: UUID) -> UserProfile | None:
        """
        Refuse new generations for free-plan accounts that are out of tokens.

        Raises:
            TokenLimitExceeded: If the account is at or above its limit
        """
        try:
            row = await asyncio.to_thread(profiles_db.get_profile, user_id)
        except Exception as e:
            logger.warning(f"Could not load profile for {user_id}, not enforcing limit: {e}")
            return None
        if not row:
            return None

        profile = UserProfile.model_validate(row)
        profile.token_limit = profile.token_limit or self.settings.FREE_PLAN_TOKEN_LIMIT
        ledger = await self.ledger_for(user_id)
        profile.tokens_used = max(profile.tokens_used, ledger.account_total)

        if profile.is_over_limit:
            raise TokenLimitExceeded(
                f"Token limit reached ({profile.tokens_used}/{profile.token_limit})"
            )
        return profile

    async def drain(self, user_id: UUID) -> None:
        """Persist the user's pending token totals now."""
        ledger = self._ledgers.get(str(user_id))
        if ledger is not None:
            await ledger.drain()

    async def _ledger_for_session(self, user_id: UUID, session: ConversationSession) -> TokenLedger:
        ledger = await self.ledger_for(user_id)
        ledger.seed_conversation(session.id, session.conversation.total_tokens_used)
        return ledger

    def _sync_token_total(self, session: ConversationSession) -> None:
        """Copy the ledger's running total for the conversation onto its record."""
        ledger = self._ledgers.get(str(session.conversation.user_id))
        if ledger is None:
            return
        session.conversation.total_tokens_used = max(
            session.conversation.total_tokens_used, ledger.conversation_total(session.id)
        )

    # =========================================================================
    # Conversations
    # =========================================================================

    async def start_conversation(
        self,
        user_id: UUID,
        title: str | None = None,
        initial_document: str | None = None,
    ) -> tuple[ConversationSession, list[str]]:
        """
        Create a conversation, optionally seeding the request document.

        Returns:
            (session, notices)

        Raises:
            ConversationCreateError: If the conversation could not be stored
        """
        if not title:
            title = derive_title(initial_document) if initial_document else DEFAULT_TITLE

        try:
            row = await asyncio.to_thread(conversations_db.create_conversation, user_id, title)
        except Exception as e:
            raise ConversationCreateError(f"Conversation could not be created: {e}") from e

        session = self.sessions.put(
            ConversationSession(conversation=Conversation.model_validate(row))
        )
        notices: list[str] = []

        if initial_document and initial_document.strip():
            ledger = await self._ledger_for_session(user_id, session)
            content, tokens = await structure_request(
                self.provider, initial_document, conversation_id=session.id
            )
            ledger.commit(tokens, conversation_id=session.id)
            try:
                await self.writer.commit(
                    session.id,
                    DocumentType.REQUEST,
                    content,
                    INITIAL_DOCUMENT_REASON,
                    tokens_used=tokens,
                )
            except PersistenceError as e:
                notices.append(str(e))

        return session, notices

    async def list_conversations(self, user_id: UUID) -> list[Conversation]:
        rows = await asyncio.to_thread(conversations_db.list_conversations, user_id)
        return [Conversation.model_validate(r) for r in rows]

    async def get_state(self, conversation_id: UUID) -> dict[str, Any]:
        """Conversation, messages, documents and draft for one conversation."""
        session = await self.sessions.load(conversation_id)
        documents = await self.version_store.list_documents(conversation_id)
        self._sync_token_total(session)
        return {
            "conversation": session.conversation,
            "messages": session.messages,
            "documents": list(documents.values()),
            "draft": session.draft,
            "is_generating": self.jobs.get_active(conversation_id) is not None,
        }

    async def rename_conversation(
        self, conversation_id: UUID, title: str
    ) -> tuple[Conversation, list[str]]:
        session = await self.sessions.load(conversation_id)
        session.conversation.title = title.strip() or DEFAULT_TITLE

        notices = []
        try:
            await asyncio.to_thread(
                conversations_db.update_conversation,
                conversation_id,
                {"title": session.conversation.title},
            )
        except Exception as e:
            notices.append(f"Title could not be saved: {e}")
        return session.conversation, notices

    async def delete_conversation(self, conversation_id: UUID) -> list[str]:
        await self.sessions.load(conversation_id)
        self.jobs.cancel(conversation_id)
        self.sessions.drop(conversation_id)

        try:
            await asyncio.to_thread(conversations_db.delete_conversation, conversation_id)
        except Exception as e:
            return [f"Conversation could not be deleted: {e}"]
        return []

    # =========================================================================
    # Turns
    # =========================================================================

    async def prepare_turn(
        self, user_id: UUID, conversation_id: UUID | None, text: str
    ) -> ConversationSession:
        """
        Resolve (or create) the conversation a new turn runs in.

        Raises:
            TokenLimitExceeded: If the account is out of tokens
            NotFoundError: If conversation_id does not exist
            ConversationCreateError: If a new conversation could not be stored
        """
        await self.check_token_limit(user_id)
        if conversation_id is None:
            session, _ = await self.start_conversation(user_id, title=derive_title(text))
            return session
        return await self.sessions.load(conversation_id)

    async def stream_turn(
        self,
        user_id: UUID,
        session: ConversationSession,
        text: str,
        is_retry: bool = False,
        notices: list[str] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Run one user turn and any document generation it requests.

        The user message is persisted before the provider is called and is
        kept whatever the generation outcome. A retry resubmits the text
        without appending a new user message.
        """
        ledger = await self._ledger_for_session(user_id, session)
        self._sync_token_total(session)
        yield {"type": "conversation", "conversation": session.conversation.model_dump(mode="json")}
        for notice in notices or []:
            yield _notice(notice)

        job = self.jobs.start(session.id, kind="chat")
        current = job
        try:
            if not is_retry:
                user_message = Message(
                    conversation_id=session.id, role=MessageRole.USER, content=text
                )
                session.append_message(user_message)
                yield {"type": "user_message", "message": user_message.model_dump(mode="json")}
                notice = await self._persist_message(user_message)
                if notice:
                    yield _notice(notice)

            async with aclosing(self._run_chat_job(session, job, ledger)) as events:
                async for event in events:
                    yield event

            # Requested by a function call; runs only if the turn finalized.
            # The finished job stays active until the next one replaces it, so
            # a stop between generations still lands.
            for doc_type in job.follow_ups:
                if current.cancelled:
                    break
                self.jobs.release(current)
                current = self.jobs.start(session.id, kind="document")
                async with aclosing(
                    self._generate_document(session, doc_type, ledger, current)
                ) as events:
                    async for event in events:
                        yield event
        finally:
            self.jobs.release(current)
            self._sync_token_total(session)

        yield {"type": "done"}

    async def send_message(
        self, user_id: UUID, conversation_id: UUID | None, text: str
    ) -> list[dict[str, Any]]:
        """Run a turn to completion and return its events."""
        session = await self.prepare_turn(user_id, conversation_id, text)
        return [event async for event in self.stream_turn(user_id, session, text)]

    async def _run_chat_job(
        self, session: ConversationSession, job: GenerationJob, ledger: TokenLedger
    ) -> AsyncIterator[dict[str, Any]]:
        history = session.history()
        assistant = Message(
            conversation_id=session.id, role=MessageRole.ASSISTANT, is_streaming=True
        )
        job.message_id = assistant.id
        session.append_message(assistant)
        yield {"type": "assistant_message", "message_id": str(assistant.id)}

        ctx = ReconcileContext(
            ledger=ledger,
            tools=ToolContext(
                conversation_id=session.id,
                job=job,
                writer=self.writer,
                ledger=ledger,
                provider=self.provider,
            ),
        )
        error: ProviderStreamError | None = None

        try:
            documents = await self.version_store.list_documents(session.id)
            async with aclosing(
                self.provider.stream_chat(history, documents, conversation_id=session.id)
            ) as stream:
                async for chunk in stream:
                    if job.cancelled:
                        raise GenerationCancelled()
                    outcome = await self.reconciler.apply(job, chunk, assistant, ctx)
                    if outcome.event:
                        yield outcome.event
            state = TurnState.ABORTED if job.cancelled else TurnState.FINALIZED
        except GenerationCancelled:
            state = TurnState.ABORTED
        except ProviderStreamError as e:
            state, error = TurnState.ERRORED, e
        except (GeneratorExit, asyncio.CancelledError):
            # Client went away mid-stream
            job.token.cancel()
            await self._settle_chat_turn(session, job, assistant, TurnState.ABORTED, None)
            raise
        except Exception as e:
            logger.exception(
                "Chat turn failed", extra={"conversation_id": str(session.id), "job_id": str(job.id)}
            )
            state, error = TurnState.ERRORED, ProviderStreamError(str(e))

        for event in await self._settle_chat_turn(session, job, assistant, state, error):
            yield event

    async def _settle_chat_turn(
        self,
        session: ConversationSession,
        job: GenerationJob,
        assistant: Message,
        state: TurnState,
        error: ProviderStreamError | None,
    ) -> list[dict[str, Any]]:
        """Move the turn to its terminal state and persist what survives."""
        events: list[dict[str, Any]] = []
        assistant.is_streaming = False
        if assistant.thought is not None:
            assistant.thought = assistant.thought.closed_out()

        if state is TurnState.ERRORED and error is not None and assistant.content.strip():
            assistant.error = MessageError(name="ProviderStreamError", message=str(error))

        keep = bool(assistant.content.strip())
        if keep:
            notice = await self._persist_message(assistant)
            if notice:
                events.append(_notice(notice))
        else:
            session.remove_message(assistant.id)

        if state is TurnState.FINALIZED:
            result = await self.reconciler.finalize(job)
            events.extend(_committed(v) for v in result.versions)
            events.extend(_notice(n) for n in result.notices)
        else:
            self.reconciler.discard(job)
            job.follow_ups.clear()

        log_with_context(
            logger,
            logging.INFO,
            f"Turn {state.value}",
            conversation_id=session.id,
            job_id=job.id,
            tokens_used=job.tokens_used,
            follow_ups=[t.value for t in job.follow_ups],
        )

        events.append(
            {
                "type": "turn_state",
                "state": state.value,
                "message": assistant.model_dump(mode="json") if keep else None,
            }
        )
        if error is not None:
            retry_target = assistant.id if keep else self._last_user_message_id(session)
            events.append(
                {
                    "type": "error",
                    "message": str(error),
                    "retryable": True,
                    "retry_message_id": str(retry_target) if retry_target else None,
                }
            )
        return events

    @staticmethod
    def _last_user_message_id(session: ConversationSession) -> UUID | None:
        for message in reversed(session.messages):
            if message.role is MessageRole.USER:
                return message.id
        return None

    async def _persist_message(self, message: Message) -> str | None:
        """Insert a message; returns a notice instead of raising."""
        try:
            await asyncio.to_thread(messages_db.insert_message, message.to_row())
        except Exception as e:
            return f"Message could not be saved: {e}"
        return None

    def stop(self, conversation_id: UUID) -> bool:
        """Cancel the conversation's active generation, if any."""
        return self.jobs.cancel(conversation_id)

    async def prepare_retry(self, conversation_id: UUID, message_id: UUID) -> RetryPlan:
        """
        Remove a failed assistant message and find the text to resubmit.

        ``message_id`` may be the failed assistant message or, when the turn
        failed before producing any content, the user message itself.

        Raises:
            NotFoundError: If the message does not exist
            PreconditionError: If there is no user message to resubmit
        """
        session = await self.sessions.load(conversation_id)
        target = session.find_message(message_id)
        if target is None:
            raise NotFoundError(f"Message {message_id} not found")

        if target.role is MessageRole.USER:
            return RetryPlan(session=session, text=target.content)

        user_message = session.preceding_user_message(message_id)
        if user_message is None:
            raise PreconditionError("No user message to retry")

        session.remove_message(message_id)
        notices = []
        try:
            await asyncio.to_thread(messages_db.delete_message, message_id)
        except Exception as e:
            notices.append(f"Failed message could not be removed: {e}")
        return RetryPlan(session=session, text=user_message.content, notices=notices)

    async def edit_message(self, conversation_id: UUID, message_id: UUID) -> str:
        """Put a previous user message back into the compose draft."""
        session = await self.sessions.load(conversation_id)
        message = session.find_message(message_id)
        if message is None or message.role is not MessageRole.USER:
            raise NotFoundError(f"User message {message_id} not found")
        session.draft = message.content
        return message.content

    async def update_feedback(
        self, conversation_id: UUID, message_id: UUID, feedback: Feedback
    ) -> tuple[Message, list[str]]:
        session = await self.sessions.load(conversation_id)
        message = session.find_message(message_id)
        if message is None or message.role is not MessageRole.ASSISTANT or message.is_streaming:
            raise NotFoundError(f"Finalized assistant message {message_id} not found")

        message.feedback = feedback
        notices = []
        try:
            await asyncio.to_thread(
                messages_db.update_message, message_id, {"feedback": feedback.model_dump()}
            )
        except Exception as e:
            notices.append(f"Feedback could not be saved: {e}")
        return message, notices

    # =========================================================================
    # Documents
    # =========================================================================

    async def list_documents(self, conversation_id: UUID) -> list[Document]:
        await self.sessions.load(conversation_id)
        documents = await self.version_store.list_documents(conversation_id)
        return list(documents.values())

    async def list_versions(
        self, conversation_id: UUID, doc_type: DocumentType
    ) -> list[DocumentVersion]:
        await self.sessions.load(conversation_id)
        return await self.version_store.list_versions(conversation_id, doc_type)

    async def prepare_document_generation(
        self, user_id: UUID, conversation_id: UUID, doc_type: DocumentType
    ) -> ConversationSession:
        """
        Raises:
            PreconditionError: If the type is not generated by streaming or upstream is missing
            TokenLimitExceeded: If the account is out of tokens
        """
        if doc_type not in STREAMABLE_TYPES:
            raise PreconditionError(f"{doc_type.value} is not generated by streaming")
        await self.check_token_limit(user_id)
        session = await self.sessions.load(conversation_id)
        await self._require_upstream(conversation_id, doc_type)
        return session

    async def stream_document(
        self,
        user_id: UUID,
        session: ConversationSession,
        doc_type: DocumentType,
        template_id: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Generate one document as a standalone job."""
        job = self.jobs.start(session.id, kind="document")
        try:
            ledger = await self._ledger_for_session(user_id, session)
            async with aclosing(
                self._generate_document(session, doc_type, ledger, job, template_id)
            ) as events:
                async for event in events:
                    yield event
        finally:
            self.jobs.release(job)
            self._sync_token_total(session)
        yield {"type": "done"}

    async def _require_upstream(self, conversation_id: UUID, doc_type: DocumentType) -> None:
        missing = await self.version_store.missing_upstream(conversation_id, doc_type)
        if missing:
            names = " and ".join(t.value for t in missing)
            raise PreconditionError(f"Generate the {names} document first")

    async def _template_for(
        self, session: ConversationSession, doc_type: DocumentType, template_id: str | None
    ) -> Template:
        if template_id is None:
            template_id = session.selected_templates.get(doc_type)
        if template_id is None:
            head = await self.version_store.get_document(session.id, doc_type)
            template_id = head.template_id if head else None
        return await self.templates.resolve(doc_type, template_id)

    async def _document_prompt(self, session: ConversationSession, template: Template) -> str:
        documents = await self.version_store.list_documents(session.id)

        def content(doc_type: DocumentType) -> str:
            document = documents.get(doc_type)
            return document.content if document else ""

        recent = session.history()[-self.settings.CHAT_HISTORY_LIMIT:]
        conversation = "\n".join(
            f"[{m.role.value}]: {m.content}" for m in recent if m.content.strip()
        )
        return render_template(
            template.prompt,
            request_document_content=content(DocumentType.REQUEST),
            analysis_document_content=content(DocumentType.ANALYSIS),
            test_scenarios_content=content(DocumentType.TEST),
            conversation_history=conversation,
        )

    async def _generate_document(
        self,
        session: ConversationSession,
        doc_type: DocumentType,
        ledger: TokenLedger,
        job: GenerationJob,
        template_id: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Stream one document into ``job``.

        The caller starts the job before any await and releases it afterwards,
        so a stop that arrives while the prompt is being prepared cancels it.
        """
        missing = await self.version_store.missing_upstream(session.id, doc_type)
        if missing:
            names = " and ".join(t.value for t in missing)
            yield {
                "type": "error",
                "message": f"Generate the {names} document first",
                "retryable": False,
            }
            return

        template = await self._template_for(session, doc_type, template_id)
        prompt = await self._document_prompt(session, template)
        if job.cancelled:
            yield {"type": "generation_cancelled", "doc_type": doc_type.value}
            return

        job.template_id = template.id
        ctx = ReconcileContext(ledger=ledger)
        yield {
            "type": "generation_started",
            "doc_type": doc_type.value,
            "job_id": str(job.id),
            "template_id": template.id,
        }

        try:
            async with aclosing(
                self.provider.stream_document(doc_type, prompt, conversation_id=session.id)
            ) as stream:
                async for chunk in stream:
                    if job.cancelled:
                        raise GenerationCancelled()
                    outcome = await self.reconciler.apply(job, chunk, None, ctx)
                    if outcome.event:
                        yield outcome.event
            if job.cancelled:
                raise GenerationCancelled()
        except GenerationCancelled:
            self.reconciler.discard(job)
            yield {"type": "generation_cancelled", "doc_type": doc_type.value}
            return
        except (GeneratorExit, asyncio.CancelledError):
            job.token.cancel()
            self.reconciler.discard(job)
            raise
        except Exception as e:
            if not isinstance(e, ProviderStreamError):
                logger.exception(
                    f"{doc_type.value} generation failed",
                    extra={"conversation_id": str(session.id), "job_id": str(job.id)},
                )
            self.reconciler.discard(job)
            yield {"type": "error", "message": str(e), "retryable": True, "doc_type": doc_type.value}
            return

        result = await self.reconciler.finalize(job)
        session.selected_templates[doc_type] = template.id

        for version in result.versions:
            yield _committed(version)
        for notice in result.notices:
            yield _notice(notice)

    async def edit_document(
        self, conversation_id: UUID, doc_type: DocumentType, content: str
    ) -> tuple[DocumentVersion, list[str]]:
        """
        Commit a user edit as a new version.

        Saving the current content unchanged commits nothing and returns the
        current version, so the head keeps its staleness flag.

        Raises:
            PersistenceError: If the version could not be written
        """
        session = await self.sessions.load(conversation_id)
        head = await self.version_store.get_document(conversation_id, doc_type)
        if head is not None and head.current_version_id and head.content == content:
            return await self.version_store.get_version(head.current_version_id), []

        reason, tokens = EDIT_REASON, 0
        if head is not None and head.has_content and doc_type is not DocumentType.REQUEST:
            reason, tokens = await self._edit_reason(session, head.content, content)

        try:
            version = await self.writer.commit(
                conversation_id,
                doc_type,
                content,
                reason,
                template_id=head.template_id if head else None,
                tokens_used=tokens,
            )
        except DocumentHeadWriteError as e:
            return e.version, [str(e)]
        return version, []

    async def _edit_reason(
        self, session: ConversationSession, old_content: str, new_content: str
    ) -> tuple[str, int]:
        """Version reason for a user edit; the plain reason when no summary is available."""
        try:
            summary, tokens = await summarize_change(
                self.provider, old_content, new_content, conversation_id=session.id
            )
        except Exception as e:
            logger.warning(
                f"Change summary failed, using plain edit reason: {e}",
                extra={"conversation_id": str(session.id)},
            )
            return EDIT_REASON, 0

        ledger = await self._ledger_for_session(session.conversation.user_id, session)
        ledger.commit(tokens, conversation_id=session.id)
        return f"{EDIT_REASON}: {summary}", tokens

    async def restore_version(
        self, conversation_id: UUID, version_id: UUID
    ) -> tuple[DocumentVersion, list[str]]:
        """
        Make an old version current by committing a copy of it.

        Raises:
            NotFoundError: If the version does not belong to the conversation
            PersistenceError: If the new version could not be written
        """
        await self.sessions.load(conversation_id)
        version = await self.version_store.get_version(version_id)
        if version.conversation_id != conversation_id:
            raise NotFoundError(f"Document version {version_id} not found")

        try:
            restored = await self.writer.restore(version)
        except DocumentHeadWriteError as e:
            return e.version, [str(e)]
        return restored, []

    async def dismiss_staleness(self, conversation_id: UUID, doc_type: DocumentType) -> bool:
        await self.sessions.load(conversation_id)
        return await self.propagator.dismiss(conversation_id, doc_type)

    async def prepare_template_change(
        self,
        user_id: UUID,
        conversation_id: UUID,
        doc_type: DocumentType,
        archive_current: bool | None,
    ) -> ConversationSession:
        """
        Raises:
            PreconditionError: If the type has no selectable template
            ConfirmationRequired: If content exists and the caller did not choose
                whether to archive it
        """
        if doc_type not in TEMPLATED_TYPES:
            raise PreconditionError(f"{doc_type.value} has no selectable template")
        session = await self.sessions.load(conversation_id)

        current = await self.version_store.get_document(conversation_id, doc_type)
        if current is not None and current.has_content:
            if archive_current is None:
                raise ConfirmationRequired(
                    f"{doc_type.value} has content; choose whether to archive it before regenerating"
                )
            await self.check_token_limit(user_id)
            await self._require_upstream(conversation_id, doc_type)
        return session

    async def stream_template_change(
        self,
        user_id: UUID,
        session: ConversationSession,
        doc_type: DocumentType,
        template_id: str,
        archive_current: bool | None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Select a template; regenerate the document if it already has content."""
        session.selected_templates[doc_type] = template_id
        yield {"type": "template_selected", "doc_type": doc_type.value, "template_id": template_id}

        current = await self.version_store.get_document(session.id, doc_type)
        if current is None or not current.has_content:
            yield {"type": "done"}
            return

        job = self.jobs.start(session.id, kind="document")
        try:
            if archive_current:
                try:
                    archived = await self.writer.commit(
                        session.id,
                        doc_type,
                        current.content,
                        ARCHIVE_REASON,
                        template_id=current.template_id,
                    )
                    yield _committed(archived)
                except DocumentHeadWriteError as e:
                    yield _committed(e.version)
                    yield _notice(str(e))
                except PersistenceError as e:
                    yield _notice(str(e))

            ledger = await self._ledger_for_session(user_id, session)
            async with aclosing(
                self._generate_document(session, doc_type, ledger, job, template_id)
            ) as events:
                async for event in events:
                    yield event
        finally:
            self.jobs.release(job)
            self._sync_token_total(session)
        yield {"type": "done"}

    # =========================================================================
    # One-shot generations
    # =========================================================================

    async def _one_shot(
        self,
        user_id: UUID,
        session: ConversationSession,
        prompt: str,
        system: str,
        workflow: str,
    ) -> tuple[str, int]:
        ledger = await self._ledger_for_session(user_id, session)
        try:
            raw, tokens = await self.provider.complete(
                prompt,
                system=system,
                model=self.settings.DOCUMENT_MODEL,
                max_tokens=self.settings.DOCUMENT_MAX_TOKENS,
                workflow=workflow,
                conversation_id=session.id,
            )
        except Exception as e:
            raise ProviderStreamError(f"{workflow} failed: {e}") from e
        ledger.commit(tokens, conversation_id=session.id)
        return raw, tokens

    async def _commit_one_shot(
        self, session: ConversationSession, doc_type: DocumentType, payload, reason: str, tokens: int
    ) -> tuple[DocumentVersion | None, list[str]]:
        try:
            version = await self.writer.commit(
                session.id, doc_type, payload, reason, tokens_used=tokens
            )
        except DocumentHeadWriteError as e:
            return e.version, [str(e)]
        except PersistenceError as e:
            return None, [str(e)]
        return version, []

    async def check_maturity(
        self, user_id: UUID, conversation_id: UUID
    ) -> tuple[MaturityReport, DocumentVersion | None, list[str]]:
        """
        Assess whether the analysis is ready and store the report.

        Raises:
            PreconditionError: If there is nothing to assess yet
            ProviderStreamError: If the provider call fails or returns an unusable report
        """
        await self.check_token_limit(user_id)
        session = await self.sessions.load(conversation_id)
        documents = await self.version_store.list_documents(conversation_id)
        request = documents.get(DocumentType.REQUEST)
        analysis = documents.get(DocumentType.ANALYSIS)
        if not session.history() and analysis is None:
            raise PreconditionError("Nothing to assess yet")

        conversation = "\n".join(
            f"[{m.role.value}]: {m.content}" for m in session.history() if m.content.strip()
        )
        raw, tokens = await self._one_shot(
            user_id,
            session,
            MATURITY_USER.format(
                request_document=request.content if request else "",
                analysis_document=analysis.content if analysis else "",
                conversation_history=conversation,
            ),
            MATURITY_SYSTEM,
            "maturity_check",
        )
        try:
            report = parse_llm_json(raw, MaturityReport)
        except Exception as e:
            raise ProviderStreamError(f"Maturity report could not be parsed: {e}") from e

        version, notices = await self._commit_one_shot(
            session, DocumentType.MATURITY_REPORT, report, MATURITY_REASON, tokens
        )
        return report, version, notices

    async def generate_backlog(
        self, user_id: UUID, conversation_id: UUID
    ) -> tuple[BacklogResponse, DocumentVersion | None, list[str]]:
        """
        Build a backlog tree from the analysis artifacts and store it.

        Raises:
            PreconditionError: If there is no analysis yet
            ProviderStreamError: If the provider call fails or returns an unusable backlog
        """
        await self.check_token_limit(user_id)
        session = await self.sessions.load(conversation_id)
        documents = await self.version_store.list_documents(conversation_id)
        analysis = documents.get(DocumentType.ANALYSIS)
        if analysis is None or not analysis.has_content:
            raise PreconditionError("Generate the analysis document first")

        def content(doc_type: DocumentType) -> str:
            document = documents.get(doc_type)
            return document.content if document else ""

        raw, tokens = await self._one_shot(
            user_id,
            session,
            BACKLOG_USER.format(
                analysis_document=analysis.content,
                test_scenarios=content(DocumentType.TEST),
                traceability=content(DocumentType.TRACEABILITY),
            ),
            BACKLOG_SYSTEM,
            "backlog_generation",
        )
        try:
            backlog = parse_llm_json(raw, BacklogResponse)
        except Exception as e:
            raise ProviderStreamError(f"Backlog could not be parsed: {e}") from e

        version, notices = await self._commit_one_shot(
            session, DocumentType.BACKLOG, backlog, BACKLOG_REASON, tokens
        )
        return backlog, version, notices
