"""Turn a free-form request description into the structured request document."""

from docsync.core.config import get_settings
from docsync.core.llm import parse_llm_json
from docsync.core.logging import get_logger
from docsync.core.prompts import REQUEST_STRUCTURE_SYSTEM, REQUEST_STRUCTURE_USER
from docsync.core.schemas_documents import RequestDocument

logger = get_logger(__name__)


async def structure_request(provider, text: str, conversation_id=None) -> tuple[str, int]:
    """
    Structure request text into RequestDocument JSON.

    Falls back to the raw text when the provider call or parsing fails, so the
    user's input is always saved.

    Args:
        provider: AI provider exposing ``complete``
        text: Request summary or pasted document
        conversation_id: For usage logging

    Returns:
        (content to store, tokens used)
    """
    settings = get_settings()

    try:
        raw, tokens = await provider.complete(
            REQUEST_STRUCTURE_USER.format(text=text),
            system=REQUEST_STRUCTURE_SYSTEM,
            model=settings.UTILITY_MODEL,
            max_tokens=2048,
            workflow="request_structuring",
            conversation_id=conversation_id,
        )
    except Exception as e:
        logger.warning(f"Request structuring call failed, saving raw text: {e}")
        return text, 0

    try:
        request = parse_llm_json(raw, RequestDocument)
    except Exception as e:
        logger.warning(f"Request structuring returned unusable JSON, saving raw text: {e}")
        return text, tokens

    return request.model_dump_json(), tokens
