"""API router for v1 endpoints."""

from fastapi import APIRouter

from docsync.api import conversations, documents

router = APIRouter()

# Conversations, chat turns and messages
router.include_router(conversations.router, tags=["conversations"])

# Documents, versions, templates and one-shot generations
router.include_router(documents.router, tags=["documents"])
