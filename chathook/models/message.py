"""
Message database model.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, String, DateTime, Text, Index, JSON
from sqlalchemy.types import TypeDecorator

from chathook.core.database import Base


class Direction(str, enum.Enum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"


class ContentType(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    LOCATION = "location"
    CONTACT = "contact"
    STICKER = "sticker"


class MessageStatus(str, enum.Enum):
    """Delivery status. pending < sent < delivered < read; failed is terminal."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_record_id() -> str:
    return uuid.uuid4().hex


class UTCDateTime(TypeDecorator):
    """Stores naive UTC and hands back aware UTC datetimes on every backend."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Message(Base):
    """A normalized chat message, the single source of truth for conversations."""

    __tablename__ = "messages"

    # Record handle, also accepted by status updates
    id = Column(String(32), primary_key=True, default=new_record_id)

    conversation_key = Column(String(255), nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    contact_number = Column(String(64), nullable=True)

    # Upstream identifiers; unique when present so racing inserts collide
    primary_id = Column(String(255), nullable=True, unique=True)
    secondary_id = Column(String(255), nullable=True, unique=True)

    direction = Column(String(16), nullable=False, default=Direction.INCOMING.value)
    counterpart = Column(String(255), nullable=False, default="me")

    content = Column(Text, nullable=False)
    content_type = Column(String(16), nullable=False, default=ContentType.TEXT.value)
    media_url = Column(Text, nullable=True)
    media_mime_type = Column(String(255), nullable=True)

    timestamp = Column(UTCDateTime, nullable=False, default=utcnow, index=True)

    status = Column(String(16), nullable=False, default=MessageStatus.SENT.value, index=True)
    delivered_at = Column(UTCDateTime, nullable=True)
    read_at = Column(UTCDateTime, nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    is_starred = Column(Boolean, nullable=False, default=False)
    is_forwarded = Column(Boolean, nullable=False, default=False)

    reply_preview = Column(String(255), nullable=True)

    # Diagnostics only; never matched on or returned by the API
    raw_payload = Column(JSON, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_messages_conversation_ts", "conversation_key", "timestamp"),
        Index("ix_messages_conversation_deleted", "conversation_key", "is_deleted"),
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, conversation_key={self.conversation_key}, status={self.status})>"

    def to_dict(self) -> dict:
        """Convert model to a JSON-friendly dictionary (raw payload excluded)."""
        return {
            "id": self.id,
            "conversation_key": self.conversation_key,
            "display_name": self.display_name,
            "contact_number": self.contact_number,
            "primary_id": self.primary_id,
            "secondary_id": self.secondary_id,
            "direction": self.direction,
            "counterpart": self.counterpart,
            "content": self.content,
            "content_type": self.content_type,
            "media_url": self.media_url,
            "media_mime_type": self.media_mime_type,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "status": self.status,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "is_deleted": self.is_deleted,
            "is_starred": self.is_starred,
            "is_forwarded": self.is_forwarded,
            "reply_preview": self.reply_preview,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
