"""Describe a user edit in one sentence for the version history."""

from docsync.core.config import get_settings
from docsync.core.logging import get_logger
from docsync.core.prompts import SUMMARIZE_CHANGE_SYSTEM, SUMMARIZE_CHANGE_USER

logger = get_logger(__name__)

SUMMARY_MAX_LENGTH = 200


async def summarize_change(
    provider, old_content: str, new_content: str, conversation_id=None
) -> tuple[str, int]:
    """
    Summarize the difference between two versions of a document.

    Args:
        provider: AI provider exposing ``complete``
        old_content: Content before the edit
        new_content: Content after the edit
        conversation_id: For usage logging

    Returns:
        (summary, tokens used)

    Raises:
        anthropic.APIError: If the provider call fails
        ValueError: If the provider returned no text
    """
    settings = get_settings()

    raw, tokens = await provider.complete(
        SUMMARIZE_CHANGE_USER.format(old_content=old_content, new_content=new_content),
        system=SUMMARIZE_CHANGE_SYSTEM,
        model=settings.UTILITY_MODEL,
        max_tokens=256,
        workflow="change_summary",
        conversation_id=conversation_id,
    )

    summary = " ".join(raw.split()).strip('"')
    if not summary:
        raise ValueError("Change summary was empty")
    if len(summary) > SUMMARY_MAX_LENGTH:
        summary = summary[: SUMMARY_MAX_LENGTH - 3].rstrip() + "..."

    logger.debug(f"Change summary: {summary}", extra={"conversation_id": str(conversation_id)})
    return summary, tokens
