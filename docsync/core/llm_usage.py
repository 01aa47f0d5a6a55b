"""Per-call LLM usage log for cost tracking.

This is the billing audit trail (one ``llm_usage_log`` row per provider call),
separate from the Token Ledger's running totals.

Usage:
    start = time.time()
    response = await client.messages.create(...)
    tokens = record_usage("maturity_check", model, response.usage, start, conversation_id=cid)
"""

import time
from typing import Any
from uuid import UUID

from docsync.core.logging import get_logger
from docsync.db.supabase_client import get_supabase

logger = get_logger(__name__)

# USD per 1M tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-opus-4-5-20251101": (15.0, 75.0),
    "claude-sonnet-4-5-20250929": (3.0, 15.0),
    "claude-sonnet-4-20250514": (3.0, 15.0),
    "claude-haiku-4-5-20251001": (0.80, 4.0),
    "claude-3-5-haiku-20241022": (0.80, 4.0),
}


def _pricing_for(model: str) -> tuple[float, float] | None:
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    # Dated variants of a known family
    family = next((key for key in MODEL_PRICING if model.startswith(key.rsplit("-", 1)[0])), None)
    return MODEL_PRICING[family] if family else None


def _estimate_cost(model: str, tokens_input: int, tokens_output: int) -> float:
    pricing = _pricing_for(model)
    if pricing is None:
        logger.warning(f"No pricing for model '{model}', recording $0")
        return 0.0
    input_rate, output_rate = pricing
    return round((tokens_input * input_rate + tokens_output * output_rate) / 1_000_000, 6)


def record_usage(
    workflow: str,
    model: str,
    usage: Any,
    started_at: float,
    conversation_id: UUID | str | None = None,
    chain: str | None = None,
) -> int:
    """
    Write one usage row for an Anthropic response. Never raises.

    Args:
        workflow: Engine workflow (chat, document_generation, staleness, ...)
        model: Model id the call used
        usage: ``response.usage`` (input_tokens / output_tokens)
        started_at: ``time.time()`` before the call
        conversation_id: Conversation the call was made for
        chain: Finer-grained call site

    Returns:
        Total tokens (input + output) for the Token Ledger
    """
    tokens_input = usage.input_tokens
    tokens_output = usage.output_tokens
    duration_ms = int((time.time() - started_at) * 1000)

    try:
        cost = _estimate_cost(model, tokens_input, tokens_output)
        row = {
            "workflow": workflow,
            "model": model,
            "provider": "anthropic",
            "tokens_input": tokens_input,
            "tokens_output": tokens_output,
            "estimated_cost_usd": cost,
            "duration_ms": duration_ms,
            "conversation_id": str(conversation_id) if conversation_id else None,
            "chain": chain,
        }
        get_supabase().table("llm_usage_log").insert(row).execute()
        logger.debug(
            f"{workflow}/{chain or '-'} {model} {tokens_input}+{tokens_output} tokens "
            f"${cost:.4f} in {duration_ms}ms",
            extra={"conversation_id": str(conversation_id)} if conversation_id else None,
        )
    except Exception as e:
        # Audit trail only; the generation itself succeeded
        logger.error(f"Failed to log LLM usage: {e}")

    return tokens_input + tokens_output
