"""
Assistant Infrastructure Models
===============================

SQLAlchemy ORM models for the assistant module.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ragdesk.infrastructure.database import Base


JSONType = JSON().with_variant(JSONB(), "postgresql")


class ConversationThreadModel(Base):
    """
    Database model for ConversationThread entity.

    One row per (channel, participant_id); messages are stored in arrival
    order as a JSON array.
    """
    __tablename__ = "conversation_threads"
    __table_args__ = (
        UniqueConstraint("channel", "participant_id", name="uq_conversation_threads_channel_participant"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    channel: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    connected_endpoint: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    participant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    participant_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    messages: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    # Denormalized summary of the last message
    last_message_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_direction: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    meta: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class MessagingProviderModel(Base):
    """
    Messaging gateway credentials stored by operators.

    Rows are looked up by name (`zapi_whatsapp`, legacy `zapi`).
    """
    __tablename__ = "messaging_providers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    instance_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    base_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
