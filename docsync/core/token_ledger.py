"""
Token Ledger.

Counts provider token usage per conversation and per account. Totals live in
memory and are updated synchronously; persistence is batched so that a burst
of usage updates costs one write, and ``drain()`` forces the pending write
(e.g. before the client navigates away).

Usage:
    from docsync.core.token_ledger import TokenLedger

    ledger = TokenLedger(user_id, account_total=profile.tokens_used)
    ledger.commit(512, conversation_id=conversation_id)
    await ledger.drain()
"""

import asyncio
from contextlib import suppress
from typing import Awaitable, Callable
from uuid import UUID

from docsync.core.config import get_settings
from docsync.core.logging import get_logger
from docsync.db import conversations as conversations_db
from docsync.db import profiles as profiles_db

logger = get_logger(__name__)


class BatchedFlusher:
    """
    Run ``flush_fn`` once ``delay`` seconds after the first schedule, or now on drain.

    Schedules that arrive while a flush is pending are coalesced into it.
    Flushes are serialized, so the last written value is always the latest.
    """

    def __init__(self, flush_fn: Callable[[], Awaitable[None]], delay: float):
        self._flush_fn = flush_fn
        self._delay = delay
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> None:
        if self.pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller): the next drain() persists the totals
            return
        self._task = loop.create_task(self._delayed())

    async def _delayed(self) -> None:
        await asyncio.sleep(self._delay)
        await self._run()

    async def _run(self) -> None:
        async with self._lock:
            await self._flush_fn()

    async def drain(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        await self._run()


class TokenLedger:
    """Per-account ledger with per-conversation sub-totals."""

    def __init__(
        self,
        user_id: UUID,
        account_total: int = 0,
        flush_delay: float | None = None,
    ):
        self.user_id = user_id
        self._account_total = account_total
        self._conversation_totals: dict[str, int] = {}
        self._dirty_conversations: set[str] = set()
        self._account_dirty = False

        if flush_delay is None:
            flush_delay = get_settings().TOKEN_FLUSH_DELAY_SECONDS
        self._flusher = BatchedFlusher(self.flush, flush_delay)

    @property
    def account_total(self) -> int:
        return self._account_total

    def conversation_total(self, conversation_id: UUID) -> int:
        return self._conversation_totals.get(str(conversation_id), 0)

    def seed_conversation(self, conversation_id: UUID, total: int) -> None:
        """Record the persisted total for a conversation the ledger has not seen yet."""
        self._conversation_totals.setdefault(str(conversation_id), total)

    def commit(self, amount: int, conversation_id: UUID | None = None) -> None:
        """
        Add ``amount`` tokens to the account and, if given, the conversation.

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError(f"Token amount must be >= 0, got {amount}")
        if amount == 0:
            return

        self._account_total += amount
        self._account_dirty = True
        if conversation_id is not None:
            key = str(conversation_id)
            self._conversation_totals[key] = self._conversation_totals.get(key, 0) + amount
            self._dirty_conversations.add(key)

        self._flusher.schedule()

    async def flush(self) -> None:
        """Persist dirty totals. Totals that fail to write stay dirty."""
        for key in list(self._dirty_conversations):
            total = self._conversation_totals[key]
            try:
                await asyncio.to_thread(
                    conversations_db.update_conversation,
                    UUID(key),
                    {"total_tokens_used": total},
                )
            except Exception as e:
                logger.warning(
                    f"Token total flush failed, will retry: {e}",
                    extra={"conversation_id": key},
                )
                continue
            if self._conversation_totals[key] == total:
                self._dirty_conversations.discard(key)

        if self._account_dirty:
            total = self._account_total
            try:
                await asyncio.to_thread(profiles_db.update_profile_tokens, self.user_id, total)
            except Exception as e:
                logger.warning(f"Account token flush failed for user {self.user_id}, will retry: {e}")
                return
            if self._account_total == total:
                self._account_dirty = False

    @property
    def dirty(self) -> bool:
        return self._account_dirty or bool(self._dirty_conversations)

    async def drain(self) -> None:
        """Persist pending totals now."""
        await self._flusher.drain()
