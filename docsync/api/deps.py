"""FastAPI dependencies."""

from functools import lru_cache

from docsync.core.conversation_engine import ConversationEngine


@lru_cache(maxsize=1)
def get_engine() -> ConversationEngine:
    """Process-wide engine; sessions, jobs and ledgers live in it."""
    return ConversationEngine()
