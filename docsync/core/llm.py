"""Anthropic client and response-parsing utilities."""

import json
import re
from functools import lru_cache
from typing import TypeVar

from anthropic import AsyncAnthropic
from pydantic import BaseModel

from docsync.core.config import get_settings

T = TypeVar("T", bound=BaseModel)


@lru_cache(maxsize=1)
def get_anthropic_client() -> AsyncAnthropic:
    """
    Get the shared AsyncAnthropic client.

    Returns:
        AsyncAnthropic instance configured with the API key from settings
    """
    settings = get_settings()
    return AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)


def _strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    fence_match = re.search(r"```(?:json|mermaid)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    # Unterminated fence (truncated output)
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_llm_json(raw_output: str, model: type[T]) -> T:
    """
    Parse LLM output as JSON and validate against a Pydantic model.

    Args:
        raw_output: Raw string from LLM response
        model: Pydantic model class to validate against

    Returns:
        Validated Pydantic model instance

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
        pydantic.ValidationError: If parsed JSON doesn't match schema
    """
    cleaned = _strip_llm_fences(raw_output)
    parsed = json.loads(cleaned)
    return model.model_validate(parsed)
