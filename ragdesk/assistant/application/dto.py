"""
Assistant Application DTOs
==========================

Data Transfer Objects for the chat API layer.

Pydantic models for request/response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ========== Request DTOs ==========

class ZAPIText(BaseModel):
    """Text body of a Z-API message."""
    model_config = ConfigDict(extra="allow")

    message: Optional[str] = None


class ZAPIWebhookPayload(BaseModel):
    """
    Z-API "on message received" webhook body.

    Field names follow the gateway's payload (including its `momment`
    spelling for the epoch-millisecond timestamp).
    """
    model_config = ConfigDict(extra="allow")

    instanceId: Optional[str] = None
    id: Optional[str] = None
    messageId: Optional[str] = None
    phone: str = ""
    connectedPhone: Optional[str] = None
    fromMe: bool = False
    isGroup: bool = False
    isStatusReply: bool = False
    momment: Optional[int] = None
    senderName: Optional[str] = None
    chatName: Optional[str] = None
    text: Optional[ZAPIText] = None
    buttonsResponseMessage: Optional[Dict[str, Any]] = None

    @property
    def message_text(self) -> str:
        if self.text is None or not self.text.message:
            return ""
        return self.text.message

    def skip_reason(self) -> Optional[str]:
        """Why this event must not be answered, or None."""
        if self.fromMe:
            return "from_me"
        if self.connectedPhone and self.phone == self.connectedPhone:
            return "self_message"
        if self.isStatusReply:
            return "status_reply"
        if self.buttonsResponseMessage is not None:
            return "button_response"
        if not self.phone:
            return "missing_phone"
        if not self.message_text.strip():
            return "empty_text"
        return None


class DirectChatRequest(BaseModel):
    """Request model for the direct chat endpoint."""
    message: str = Field(..., min_length=1, description="User question")
    phone: Optional[str] = Field(None, description="User phone, used as participant id when present")
    user_identifier: Optional[str] = Field(None, description="Caller-supplied participant id")
    include_history: bool = Field(default=True, description="Give recent history to the generator")

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Reject blank and oversized messages."""
        if not v.strip():
            raise ValueError("message must not be blank")
        if len(v) > 10000:
            raise ValueError("message too long (max 10000 characters)")
        return v


# ========== Response DTOs ==========

class WebhookResponse(BaseModel):
    """Response model for the gateway webhook."""
    success: bool = True
    skipped: bool = False
    reason: Optional[str] = None
    stage: Optional[str] = None
    sent: bool = False
    conversation_id: Optional[str] = None
    response_preview: Optional[str] = None
    processing_time_ms: int = 0


class DocumentUsedInfo(BaseModel):
    """A ranked document given to the generator."""
    id: str
    title: str
    relevance_score: Optional[float] = None


class CitationInfo(BaseModel):
    """Citation information in API response."""
    index: int
    document_id: str
    title: str
    category: str
    snippet: str


class ChatMetadata(BaseModel):
    processing_time_ms: int
    history_length: int
    documents_found: int
    documents_used: int
    stage: str


class DirectChatResponse(BaseModel):
    """Response model for the direct chat endpoint."""
    success: bool = True
    response: str
    participant_id: str
    conversation_id: Optional[str] = None
    docs_used: List[DocumentUsedInfo] = Field(default_factory=list)
    citations: List[CitationInfo] = Field(default_factory=list)
    metadata: ChatMetadata


class MessageInfo(BaseModel):
    id: str
    direction: str
    text: str
    timestamp: datetime
    status: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ThreadMessagesResponse(BaseModel):
    """Read-only history of one thread."""
    channel: str
    participant_id: str
    messages: List[MessageInfo]
