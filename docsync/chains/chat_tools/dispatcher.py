"""Tool dispatch: routes a provider function call to its handler."""

from typing import Any, Awaitable, Callable, Dict

from pydantic import BaseModel, ValidationError

from docsync.core.errors import FunctionCallError
from docsync.core.logging import get_logger

from .context import ToolContext

logger = get_logger(__name__)


class _NoArgs(BaseModel):
    model_config = {"extra": "ignore"}


Handler = Callable[[ToolContext, Any], Awaitable[str]]

# Lazy handler map, populated on first call
_HANDLER_MAP: Dict[str, tuple[type[BaseModel], Handler]] | None = None


def _build_handler_map() -> Dict[str, tuple[type[BaseModel], Handler]]:
    from .tools_generation import (
        _start_analysis,
        _start_test,
        _start_traceability,
        _start_visualization,
    )
    from .tools_request import SaveRequestSummaryArgs, _save_request_summary

    return {
        "saveRequestSummary": (SaveRequestSummaryArgs, _save_request_summary),
        "startAnalysisGeneration": (_NoArgs, _start_analysis),
        "startTestGeneration": (_NoArgs, _start_test),
        "startVisualizationGeneration": (_NoArgs, _start_visualization),
        "startTraceabilityGeneration": (_NoArgs, _start_traceability),
    }


async def execute_tool(ctx: ToolContext, tool_name: str, tool_input: Dict[str, Any]) -> str | None:
    """
    Validate and run one function call.

    Args:
        ctx: Turn context (conversation, job, writer, ledger, provider)
        tool_name: Command name emitted by the provider
        tool_input: Raw arguments

    Returns:
        Acknowledgment text for the assistant message, or None for unknown commands

    Raises:
        FunctionCallError: If the arguments are invalid or the side effect failed
    """
    global _HANDLER_MAP
    if _HANDLER_MAP is None:
        _HANDLER_MAP = _build_handler_map()

    entry = _HANDLER_MAP.get(tool_name)
    if entry is None:
        logger.warning(
            f"Ignoring unknown function call: {tool_name}",
            extra={"conversation_id": str(ctx.conversation_id)},
        )
        return None

    args_model, handler = entry
    try:
        args = args_model.model_validate(tool_input or {})
    except ValidationError as e:
        raise FunctionCallError(f"Invalid arguments for {tool_name}: {e.error_count()} error(s)") from e

    logger.info(
        f"Executing function call {tool_name}",
        extra={"conversation_id": str(ctx.conversation_id), "job_id": str(ctx.job.id)},
    )
    return await handler(ctx, args)
