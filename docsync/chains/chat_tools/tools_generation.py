"""start*Generation: schedule a document generation after the current turn."""

from docsync.core.errors import FunctionCallError
from docsync.core.schemas_documents import DocumentType

from .context import ToolContext

_ACKNOWLEDGMENTS = {
    DocumentType.ANALYSIS: "I'm writing the analysis document now; it will appear in the workspace.",
    DocumentType.TEST: "I'm preparing the test scenarios now; they will appear in the workspace.",
    DocumentType.DIAGRAM: "I'm drawing the process flow now; it will appear in the workspace.",
    DocumentType.TRACEABILITY: (
        "I'm building the traceability matrix now; it will appear in the workspace."
    ),
}


async def _start_generation(ctx: ToolContext, doc_type: DocumentType) -> str:
    missing = await ctx.writer.version_store.missing_upstream(ctx.conversation_id, doc_type)
    if missing:
        names = " and ".join(t.value for t in missing)
        raise FunctionCallError(f"Generate the {names} document first.")

    ctx.job.request_follow_up(doc_type)
    return _ACKNOWLEDGMENTS[doc_type]


async def _start_analysis(ctx: ToolContext, _args) -> str:
    return await _start_generation(ctx, DocumentType.ANALYSIS)


async def _start_test(ctx: ToolContext, _args) -> str:
    return await _start_generation(ctx, DocumentType.TEST)


async def _start_visualization(ctx: ToolContext, _args) -> str:
    return await _start_generation(ctx, DocumentType.DIAGRAM)


async def _start_traceability(ctx: ToolContext, _args) -> str:
    return await _start_generation(ctx, DocumentType.TRACEABILITY)
