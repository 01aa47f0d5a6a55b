"""Pydantic schemas for conversations, messages and account profiles."""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TurnState(str, Enum):
    """Lifecycle of one assistant turn."""
    PENDING = "pending"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    ABORTED = "aborted"
    ERRORED = "errored"


TERMINAL_TURN_STATES = frozenset({TurnState.FINALIZED, TurnState.ABORTED, TurnState.ERRORED})


class Feedback(BaseModel):
    rating: Optional[Literal["up", "down"]] = None
    comment: Optional[str] = None


class MessageError(BaseModel):
    """Recoverable error attached to an assistant message."""

    name: str
    message: str


class ThinkingStep(BaseModel):
    id: str
    name: str
    status: Literal["pending", "in_progress", "completed", "error"] = "pending"
    details: Optional[str] = None
    description: Optional[str] = None


class ThoughtProcess(BaseModel):
    """Reasoning trace the assistant emits before its reply."""

    title: str
    steps: list[ThinkingStep] = Field(default_factory=list)

    def closed_out(self) -> "ThoughtProcess":
        """Copy with every unfinished step marked completed."""
        steps = [
            step.model_copy(update={"status": "error" if step.status == "error" else "completed"})
            for step in self.steps
        ]
        return self.model_copy(update={"steps": steps})


class Message(BaseModel):
    """A chat message. Assistant messages are mutable only while streaming."""

    id: UUID = Field(default_factory=uuid4)
    conversation_id: UUID
    role: MessageRole
    content: str = ""
    feedback: Optional[Feedback] = None
    error: Optional[MessageError] = None
    acknowledgment: Optional[str] = None
    thought: Optional[ThoughtProcess] = None
    is_streaming: bool = False
    created_at: datetime = Field(default_factory=_utc_now)

    def to_row(self) -> dict:
        """Serialize for the ``messages`` table."""
        return {
            "id": str(self.id),
            "conversation_id": str(self.conversation_id),
            "role": self.role.value,
            "content": self.content,
            "feedback": self.feedback.model_dump() if self.feedback else None,
            "error": self.error.model_dump() if self.error else None,
            "acknowledgment": self.acknowledgment,
            "thought": self.thought.model_dump() if self.thought else None,
            "created_at": self.created_at.isoformat(),
        }


class Conversation(BaseModel):
    id: UUID
    user_id: UUID
    title: str = "New Analysis"
    total_tokens_used: int = 0
    created_at: Optional[datetime] = None


class UserProfile(BaseModel):
    id: UUID
    plan: str = "free"
    tokens_used: int = 0
    token_limit: int = 0

    @property
    def is_over_limit(self) -> bool:
        return self.plan == "free" and self.token_limit > 0 and self.tokens_used >= self.token_limit
