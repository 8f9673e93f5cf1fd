"""
Assistant Interfaces Layer
==========================

Contains:
- Controllers: FastAPI route handlers for the webhook, direct chat and
  thread history endpoints
"""

from ragdesk.assistant.interfaces.controllers import chat_router

__all__ = ["chat_router"]
