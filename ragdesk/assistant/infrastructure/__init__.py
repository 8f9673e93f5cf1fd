"""
Assistant Infrastructure Layer
==============================

Contains:
- Models: SQLAlchemy ORM models
- Repositories: conversation stores, messaging-provider credentials
- External: gateway credential resolution
"""

from ragdesk.assistant.infrastructure.models import (
    ConversationThreadModel,
    MessagingProviderModel,
)
from ragdesk.assistant.infrastructure.repositories import (
    InMemoryConversationStore,
    KeyedLocks,
    MessagingProviderRepository,
    SQLAlchemyConversationStore,
)
from ragdesk.assistant.infrastructure.external import (
    env_gateway_values,
    gateway_credentials_loader,
)

__all__ = [
    "ConversationThreadModel",
    "MessagingProviderModel",
    "InMemoryConversationStore",
    "KeyedLocks",
    "MessagingProviderRepository",
    "SQLAlchemyConversationStore",
    "env_gateway_values",
    "gateway_credentials_loader",
]
