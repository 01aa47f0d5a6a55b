"""Impact oracle: which derived documents does an analysis change affect?

One Haiku call comparing the previous and new analysis content. Callers treat
any exception as "no verdict" and leave staleness flags untouched.
"""

import time

from docsync.core.config import get_settings
from docsync.core.llm import get_anthropic_client, parse_llm_json
from docsync.core.llm_usage import record_usage
from docsync.core.logging import get_logger
from docsync.core.prompts import IMPACT_SYSTEM, IMPACT_USER
from docsync.core.schemas_documents import ImpactAssessment

logger = get_logger(__name__)


async def assess_document_impact(old_content: str, new_content: str) -> ImpactAssessment:
    """
    Ask the provider which derived documents an analysis change invalidates.

    Args:
        old_content: Analysis content before the change
        new_content: Analysis content after the change

    Returns:
        ImpactAssessment with one flag per derived document type

    Raises:
        anthropic.APIError: If the provider call fails
        json.JSONDecodeError / pydantic.ValidationError: If the verdict is malformed
    """
    settings = get_settings()
    client = get_anthropic_client()

    start = time.time()
    response = await client.messages.create(
        model=settings.IMPACT_MODEL,
        max_tokens=512,
        temperature=0.0,
        system=IMPACT_SYSTEM,
        messages=[
            {
                "role": "user",
                "content": IMPACT_USER.format(old_content=old_content, new_content=new_content),
            }
        ],
    )
    record_usage("staleness", settings.IMPACT_MODEL, response.usage, start, chain="impact_oracle")
    assessment = parse_llm_json(response.content[0].text, ImpactAssessment)

    logger.info(
        f"Impact assessment: test={assessment.test}, traceability={assessment.traceability}, "
        f"diagram={assessment.diagram}"
    )
    return assessment
