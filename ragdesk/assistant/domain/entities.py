"""
Assistant Domain Entities
=========================

Domain entities for the retrieval-augmented support assistant.

Contains pure Python business objects: knowledge documents and the per-call
retrieval/rerank/answer values, conversation threads and messages, tagged
parse results for model output, and tagged inbound messages.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from ragdesk.config import MessageDirection, MessageStatus, ELIGIBLE_DOCUMENT_STATUSES


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Knowledge ==========

@dataclass
class KnowledgeDocument:
    """
    A knowledge-base document, read-only to the assistant.

    `content` may be plain text or a structured blob.
    """
    id: str
    title: str
    category: str = ""
    content: Any = ""
    tags: List[str] = field(default_factory=list)
    status: str = "active"

    @property
    def is_eligible(self) -> bool:
        return self.status in ELIGIBLE_DOCUMENT_STATUSES


@dataclass
class RetrievalCandidate:
    """A document with its combined vector/lexical score and retrieval position."""
    document: KnowledgeDocument
    score: float
    rank: int

    @property
    def id(self) -> str:
        return self.document.id


@dataclass
class RankedDocument:
    """
    A candidate kept by the reranker.

    `relevance_score` is 0-100, or None when reranking fell back to
    retrieval order.
    """
    candidate: RetrievalCandidate
    relevance_score: Optional[float] = None

    @property
    def id(self) -> str:
        return self.candidate.document.id

    @property
    def document(self) -> KnowledgeDocument:
        return self.candidate.document


@dataclass
class Citation:
    """
    Citation for a generated answer.

    `index` is 1-based into the ranked list given to the generator.
    """
    index: int
    document_id: str
    title: str
    category: str
    snippet: str


@dataclass
class GeneratedAnswer:
    """Answer text plus the validated sources it cites."""
    text: str
    cited_source_indices: List[int] = field(default_factory=list)
    citations: List[Citation] = field(default_factory=list)
    model: Optional[str] = None
    is_fallback: bool = False
    latency_ms: int = 0

    @property
    def cited_document_ids(self) -> List[str]:
        return [citation.document_id for citation in self.citations]


# ========== Tagged parse results ==========

@dataclass
class RerankScore:
    document_id: str
    score: float


@dataclass
class RerankParsed:
    """Reranker output that parsed into a score list."""
    scores: List[RerankScore]


@dataclass
class RerankParseError:
    """Reranker output that could not be used."""
    raw: str
    reason: str


RerankParseResult = Union[RerankParsed, RerankParseError]


@dataclass
class AnswerParsed:
    """Answer output that parsed into text and raw cited indices."""
    text: str
    indices: List[Any]


@dataclass
class AnswerParseError:
    """Answer output that could not be used."""
    raw: str
    reason: str


AnswerParseResult = Union[AnswerParsed, AnswerParseError]


# ========== Conversation ==========

@dataclass(frozen=True)
class Message:
    """
    One message in a conversation thread.

    Immutable once created.
    """
    id: str
    direction: str
    text: str
    timestamp: datetime = field(default_factory=utc_now)
    status: str = MessageStatus.RECEIVED
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def inbound(cls, text: str, message_id: Optional[str] = None, **metadata: Any) -> "Message":
        return cls(
            id=message_id or str(uuid.uuid4()),
            direction=MessageDirection.INBOUND,
            text=text,
            status=MessageStatus.RECEIVED,
            metadata=metadata,
        )

    @classmethod
    def outbound(cls, text: str, delivered: bool, **metadata: Any) -> "Message":
        return cls(
            id=str(uuid.uuid4()),
            direction=MessageDirection.OUTBOUND,
            text=text,
            status=MessageStatus.SENT if delivered else MessageStatus.FAILED,
            metadata=metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "direction": self.direction,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            id=data["id"],
            direction=data["direction"],
            text=data.get("text", ""),
            timestamp=timestamp or utc_now(),
            status=data.get("status", MessageStatus.RECEIVED),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class ConversationThread:
    """
    Conversation history for one (channel, participant_id) pair.

    Messages are append-only, in arrival order. `replayed` is set on the
    value returned by an upsert whose message id was already present.
    """
    channel: str
    participant_id: str
    connected_endpoint: str = ""
    participant_name: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    last_message_text: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_direction: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    replayed: bool = False

    @property
    def key(self) -> tuple:
        return (self.channel, self.participant_id)

    def has_message(self, message_id: str) -> bool:
        return any(message.id == message_id for message in self.messages)

    def answered(self, message_id: str) -> bool:
        """True when a delivered outbound reply to `message_id` is recorded."""
        return any(
            message.direction == MessageDirection.OUTBOUND
            and message.status == MessageStatus.SENT
            and message.metadata.get("in_reply_to") == message_id
            for message in self.messages
        )

    def append(self, message: Message) -> bool:
        """Append and update the summary. False when the id is already present."""
        if self.has_message(message.id):
            return False
        self.messages.append(message)
        self.last_message_text = message.text
        self.last_message_at = message.timestamp
        self.last_direction = message.direction
        return True

    def tail(self, limit: int) -> List[Message]:
        if limit <= 0:
            return []
        return list(self.messages[-limit:])


# ========== Inbound ==========

@dataclass
class GatewayInbound:
    """A message received through the messaging-gateway webhook."""
    message_id: str
    phone: str
    text: str
    connected_phone: str = ""
    sender_name: Optional[str] = None
    is_group: bool = False
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_webhook(cls, payload: Any) -> "GatewayInbound":
        """Build from a validated Z-API webhook payload."""
        moment = payload.momment
        timestamp = (
            datetime.fromtimestamp(moment / 1000, tz=timezone.utc) if moment else utc_now()
        )
        return cls(
            message_id=payload.id or payload.messageId or str(uuid.uuid4()),
            phone=payload.phone,
            text=payload.message_text.strip(),
            connected_phone=payload.connectedPhone or "",
            sender_name=payload.chatName or payload.senderName,
            is_group=bool(payload.isGroup),
            timestamp=timestamp,
        )


@dataclass
class DirectInbound:
    """A message received on the direct request/response endpoint."""
    message_id: str
    participant_id: str
    text: str
    include_history: bool = True
    phone: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_request(cls, request: Any, default_country_code: str = "55") -> "DirectInbound":
        """
        Build from a validated direct chat request.

        The participant is the normalized phone, else the caller-supplied
        identifier, else a fresh UUID.
        """
        phone = normalize_phone(request.phone, default_country_code) if request.phone else None
        participant_id = phone or request.user_identifier or str(uuid.uuid4())
        return cls(
            message_id=str(uuid.uuid4()),
            participant_id=participant_id,
            text=request.message.strip(),
            include_history=request.include_history,
            phone=phone,
        )


Inbound = Union[GatewayInbound, DirectInbound]


def normalize_phone(phone: str, default_country_code: str = "55") -> Optional[str]:
    """Digits only; prefix the country code to bare national numbers."""
    digits = "".join(ch for ch in phone if ch.isdigit())
    if not digits:
        return None
    if not digits.startswith(default_country_code) and len(digits) >= 10:
        digits = default_country_code + digits
    return digits
