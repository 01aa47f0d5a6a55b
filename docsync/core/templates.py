"""Template catalogue: stored templates with built-in system defaults."""

import asyncio

from docsync.core.logging import get_logger
from docsync.core.prompts import DEFAULT_TEMPLATES
from docsync.core.schemas_documents import DocumentType, Template
from docsync.db import templates as templates_db

logger = get_logger(__name__)


def builtin_template(doc_type: DocumentType) -> Template:
    name, prompt = DEFAULT_TEMPLATES[doc_type]
    return Template(
        id=f"system-{doc_type.value}",
        name=name,
        document_type=doc_type,
        prompt=prompt,
        is_system_template=True,
    )


class TemplateCatalog:
    """Resolves the template a generation should use."""

    async def available(self, doc_type: DocumentType) -> list[Template]:
        """Stored templates for a type, plus the built-in default if none is marked system."""
        try:
            rows = await asyncio.to_thread(templates_db.list_templates, doc_type.value)
        except Exception as e:
            logger.warning(f"Could not load {doc_type.value} templates: {e}")
            rows = []

        templates = [Template.model_validate(r) for r in rows]
        if doc_type in DEFAULT_TEMPLATES and not any(t.is_system_template for t in templates):
            templates.insert(0, builtin_template(doc_type))
        return templates

    async def resolve(self, doc_type: DocumentType, template_id: str | None = None) -> Template:
        """
        Pick the template for a generation.

        An explicit id wins when it exists and matches the type; otherwise the
        type's system template is used.
        """
        if template_id and template_id != f"system-{doc_type.value}":
            try:
                row = await asyncio.to_thread(templates_db.get_template, template_id)
            except Exception as e:
                logger.warning(f"Could not load template {template_id}: {e}")
                row = None
            if row and row.get("document_type") == doc_type.value:
                return Template.model_validate(row)
            logger.warning(f"Template {template_id} unavailable for {doc_type.value}, using default")

        templates = await self.available(doc_type)
        for template in templates:
            if template.is_system_template:
                return template
        return builtin_template(doc_type)
