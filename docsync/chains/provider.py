"""Anthropic provider: turns Messages API streams into engine stream chunks.

Streams never raise: transport and model failures end the stream with an
``ErrorChunk``. Chat streams carry text, an optional leading reasoning trace,
at most the tool calls the model made, and a final usage update. Document
streams carry fragments for one document type and a final usage update.
"""

import time
from typing import AsyncIterator

from pydantic import ValidationError

from docsync.chains.chat_tools import get_tool_definitions
from docsync.core.config import get_settings
from docsync.core.llm import get_anthropic_client
from docsync.core.llm_usage import record_usage
from docsync.core.logging import get_logger
from docsync.core.prompts import CHAT_SYSTEM_ANALYST, CHAT_SYSTEM_STARTING, THINKING_INSTRUCTIONS
from docsync.core.schemas_chat import Message, MessageRole, ThoughtProcess
from docsync.core.schemas_documents import Document, DocumentType
from docsync.core.schemas_stream import (
    DocStreamChunk,
    ErrorChunk,
    FunctionCallChunk,
    StreamChunk,
    TextChunk,
    ThoughtChunk,
    UsageUpdate,
)

logger = get_logger(__name__)

THINKING_OPEN = "<thinking>"
THINKING_CLOSE = "</thinking>"


class ThoughtStreamParser:
    """
    Split a leading ``<thinking>{json}</thinking>`` block off a text stream.

    Text is held back only while it could still be the start of the block;
    once the block is closed (or ruled out) everything passes through.
    """

    def __init__(self):
        self._buffer = ""
        self._resolved = False

    def feed(self, text: str) -> list[StreamChunk]:
        if self._resolved:
            return [TextChunk(text=text)] if text else []

        self._buffer += text
        stripped = self._buffer.lstrip()
        if not stripped:
            return []

        if not stripped.startswith(THINKING_OPEN):
            if THINKING_OPEN.startswith(stripped):
                return []
            return self.flush()

        end = stripped.find(THINKING_CLOSE)
        if end == -1:
            return []

        raw = stripped[len(THINKING_OPEN):end].strip()
        rest = stripped[end + len(THINKING_CLOSE):].lstrip()
        self._resolved = True
        self._buffer = ""

        chunks: list[StreamChunk] = []
        try:
            chunks.append(ThoughtChunk(thought=ThoughtProcess.model_validate_json(raw)))
        except ValidationError as e:
            logger.warning(f"Discarding malformed thinking block: {e.error_count()} errors")
        if rest:
            chunks.append(TextChunk(text=rest))
        return chunks

    def flush(self) -> list[StreamChunk]:
        """Release held-back text (end of stream, or no thinking block)."""
        if self._resolved:
            return []
        self._resolved = True
        held, self._buffer = self._buffer, ""
        return [TextChunk(text=held)] if held else []


def _history_for_api(history: list[Message], limit: int) -> list[dict]:
    """Recent user/assistant turns in Messages API shape, starting with a user turn."""
    turns = [
        {"role": m.role.value, "content": m.content}
        for m in history
        if m.role in (MessageRole.USER, MessageRole.ASSISTANT) and m.content.strip()
    ][-limit:]
    while turns and turns[0]["role"] != "user":
        turns.pop(0)
    return turns


def build_chat_system(documents: dict[DocumentType, Document]) -> str:
    analysis = documents.get(DocumentType.ANALYSIS)
    if analysis is None or not analysis.has_content:
        return CHAT_SYSTEM_STARTING.replace("{thinking}", THINKING_INSTRUCTIONS)

    request = documents.get(DocumentType.REQUEST)
    return (
        CHAT_SYSTEM_ANALYST.replace("{request_document}", request.content if request else "(none)")
        .replace("{analysis_document}", analysis.content)
        .replace("{thinking}", THINKING_INSTRUCTIONS)
    )


class AnthropicProvider:
    """AI provider backed by the Anthropic Messages API."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_anthropic_client()
        return self._client

    async def stream_chat(
        self,
        history: list[Message],
        documents: dict[DocumentType, Document],
        conversation_id=None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream one assistant turn.

        Args:
            history: Conversation messages up to and including the user's message
            documents: Current document heads (shape the system prompt)
            conversation_id: For usage logging

        Yields:
            Stream chunks; the last one is a UsageUpdate or an ErrorChunk
        """
        settings = get_settings()
        parser = ThoughtStreamParser()
        start = time.time()

        try:
            async with self.client.messages.stream(
                model=settings.CHAT_MODEL,
                max_tokens=settings.CHAT_MAX_TOKENS,
                system=build_chat_system(documents),
                messages=_history_for_api(history, settings.CHAT_HISTORY_LIMIT),
                tools=get_tool_definitions(),
            ) as stream:
                async for event in stream:
                    if event.type == "content_block_delta" and hasattr(event.delta, "text"):
                        for chunk in parser.feed(event.delta.text):
                            yield chunk

                for chunk in parser.flush():
                    yield chunk

                final_message = await stream.get_final_message()

        except Exception as e:
            logger.error(f"Chat stream failed: {e}", exc_info=True)
            yield ErrorChunk(message=str(e) or type(e).__name__)
            return

        for block in final_message.content:
            if block.type == "tool_use":
                yield FunctionCallChunk(name=block.name, args=dict(block.input or {}))

        tokens = record_usage(
            "chat",
            settings.CHAT_MODEL,
            final_message.usage,
            start,
            conversation_id=conversation_id,
            chain="stream_chat",
        )
        yield UsageUpdate(amount=tokens)

    async def stream_document(
        self,
        doc_type: DocumentType,
        prompt: str,
        conversation_id=None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a generated document as fragments for ``doc_type``."""
        settings = get_settings()
        start = time.time()

        try:
            async with self.client.messages.stream(
                model=settings.DOCUMENT_MODEL,
                max_tokens=settings.DOCUMENT_MAX_TOKENS,
                messages=[{"role": "user", "content": prompt}],
            ) as stream:
                async for event in stream:
                    if event.type == "content_block_delta" and hasattr(event.delta, "text"):
                        yield DocStreamChunk(doc_type=doc_type, fragment=event.delta.text)

                final_message = await stream.get_final_message()

        except Exception as e:
            logger.error(f"{doc_type.value} generation stream failed: {e}", exc_info=True)
            yield ErrorChunk(message=str(e) or type(e).__name__)
            return

        tokens = record_usage(
            "document_generation",
            settings.DOCUMENT_MODEL,
            final_message.usage,
            start,
            conversation_id=conversation_id,
            chain=f"generate_{doc_type.value}",
        )
        yield UsageUpdate(amount=tokens)

    async def complete(
        self,
        prompt: str,
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 2048,
        workflow: str = "utility",
        conversation_id=None,
    ) -> tuple[str, int]:
        """
        One-shot completion.

        Returns:
            (response text, tokens used)

        Raises:
            anthropic.APIError: If the provider call fails
        """
        settings = get_settings()
        model = model or settings.UTILITY_MODEL

        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        start = time.time()
        response = await self.client.messages.create(**kwargs)
        tokens = record_usage(
            workflow, model, response.usage, start, conversation_id=conversation_id, chain="complete"
        )

        text = "".join(block.text for block in response.content if block.type == "text")
        return text, tokens
