"""
In-memory conversation sessions.

A session is the engine's working copy of one conversation: its record, its
ordered messages (including the transient streaming assistant message), the
compose-box draft and the template selected per document type. State changes
go through the named actions below; persistence is the engine's concern.
"""

import asyncio
from dataclasses import dataclass, field
from uuid import UUID

from docsync.core.errors import NotFoundError
from docsync.core.logging import get_logger
from docsync.core.schemas_chat import Conversation, Message, MessageRole
from docsync.core.schemas_documents import DocumentType
from docsync.db import conversations as conversations_db
from docsync.db import messages as messages_db

logger = get_logger(__name__)


@dataclass
class ConversationSession:
    conversation: Conversation
    messages: list[Message] = field(default_factory=list)
    draft: str | None = None
    selected_templates: dict[DocumentType, str] = field(default_factory=dict)

    @property
    def id(self) -> UUID:
        return self.conversation.id

    def append_message(self, message: Message) -> None:
        self.messages.append(message)

    def remove_message(self, message_id: UUID) -> Message | None:
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                return self.messages.pop(index)
        return None

    def find_message(self, message_id: UUID) -> Message | None:
        return next((m for m in self.messages if m.id == message_id), None)

    def preceding_user_message(self, message_id: UUID) -> Message | None:
        """The closest user message before ``message_id``."""
        previous_user = None
        for message in self.messages:
            if message.id == message_id:
                return previous_user
            if message.role is MessageRole.USER:
                previous_user = message
        return None

    def history(self) -> list[Message]:
        """Messages that are no longer streaming."""
        return [m for m in self.messages if not m.is_streaming]


class SessionStore:
    """Loaded sessions keyed by conversation id."""

    def __init__(self):
        self._sessions: dict[str, ConversationSession] = {}

    def get(self, conversation_id: UUID) -> ConversationSession | None:
        return self._sessions.get(str(conversation_id))

    def put(self, session: ConversationSession) -> ConversationSession:
        self._sessions[str(session.id)] = session
        return session

    def drop(self, conversation_id: UUID) -> None:
        self._sessions.pop(str(conversation_id), None)

    async def load(self, conversation_id: UUID) -> ConversationSession:
        """
        Get a session, loading it from the store on first access.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        session = self.get(conversation_id)
        if session is not None:
            return session

        row = await asyncio.to_thread(conversations_db.get_conversation, conversation_id)
        if not row:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        message_rows = await asyncio.to_thread(messages_db.list_messages, conversation_id)
        session = ConversationSession(
            conversation=Conversation.model_validate(row),
            messages=[Message.model_validate(r) for r in message_rows],
        )
        logger.debug(
            f"Loaded session with {len(session.messages)} messages",
            extra={"conversation_id": str(conversation_id)},
        )
        return self.put(session)
