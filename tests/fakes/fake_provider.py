"""Scripted AI provider for engine tests.

Each stream call pops the next script: a list of stream chunks, optionally
interleaved with hooks (plain or async callables) that run between chunks,
e.g. to stop the conversation mid-stream.
"""

import inspect
from typing import Any

from docsync.core.schemas_documents import DocumentType
from docsync.core.schemas_stream import DocStreamChunk, TextChunk, UsageUpdate


class FakeProvider:
    def __init__(
        self,
        chat_scripts: list[list[Any]] | None = None,
        document_scripts: dict[DocumentType, list[list[Any]]] | None = None,
        completions: list[Any] | None = None,
    ):
        self.chat_scripts = list(chat_scripts or [])
        self.document_scripts = {k: list(v) for k, v in (document_scripts or {}).items()}
        self.completions = list(completions or [])
        self.chat_calls: list[dict[str, Any]] = []
        self.document_calls: list[dict[str, Any]] = []
        self.complete_calls: list[dict[str, Any]] = []

    @staticmethod
    async def _play(script: list[Any]):
        for item in script:
            if callable(item):
                result = item()
                if inspect.isawaitable(result):
                    await result
                continue
            yield item

    async def stream_chat(self, history, documents, conversation_id=None):
        self.chat_calls.append(
            {"history": list(history), "documents": dict(documents), "conversation_id": conversation_id}
        )
        script = self.chat_scripts.pop(0) if self.chat_scripts else [
            TextChunk(text="OK."),
            UsageUpdate(amount=10),
        ]
        async for chunk in self._play(script):
            yield chunk

    async def stream_document(self, doc_type, prompt, conversation_id=None):
        self.document_calls.append({"doc_type": doc_type, "prompt": prompt})
        scripts = self.document_scripts.get(doc_type) or []
        script = scripts.pop(0) if scripts else [
            DocStreamChunk(doc_type=doc_type, fragment=f"# {doc_type.value}\n"),
            DocStreamChunk(doc_type=doc_type, fragment="generated body"),
            UsageUpdate(amount=100),
        ]
        async for chunk in self._play(script):
            yield chunk

    async def complete(
        self,
        prompt,
        system=None,
        model=None,
        max_tokens=2048,
        workflow="utility",
        conversation_id=None,
    ):
        self.complete_calls.append({"prompt": prompt, "workflow": workflow})
        if not self.completions:
            raise RuntimeError("No scripted completion")
        result = self.completions.pop(0)
        if isinstance(result, Exception):
            raise result
        return result
