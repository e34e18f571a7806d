"""
Message normalizer.

Turns one message-like object (plus the payload it came in) into a
``MessageDraft``: the canonical, not yet persisted form of a message.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from chathook.core.errors import UnresolvableConversation
from chathook.models.message import ContentType, Direction, MessageStatus, utcnow
from chathook.services.content import extract_content
from chathook.services.identifiers import (
    MessageIdentifiers,
    collect_identifiers,
    first_value,
    resolve_timestamp,
)

LOCAL_USER = "me"
OUTBOUND_DIRECTIONS = ("outbound", "outgoing")


@dataclass
class MessageDraft:
    conversation_key: str
    content: str
    timestamp: datetime
    display_name: Optional[str] = None
    contact_number: Optional[str] = None
    identifiers: MessageIdentifiers = field(default_factory=MessageIdentifiers)
    direction: Direction = Direction.INCOMING
    counterpart: str = LOCAL_USER
    content_type: ContentType = ContentType.TEXT
    media_url: Optional[str] = None
    media_mime_type: Optional[str] = None
    status: MessageStatus = MessageStatus.SENT
    reply_preview: Optional[str] = None
    is_forwarded: bool = False
    raw_payload: Optional[Dict[str, Any]] = None

    @property
    def primary_id(self) -> Optional[str]:
        return self.identifiers.primary_id

    @property
    def secondary_id(self) -> Optional[str]:
        return self.identifiers.secondary_id

    def to_record(self) -> Dict[str, Any]:
        """Column values for a ``Message`` row."""
        return {
            "conversation_key": self.conversation_key,
            "display_name": self.display_name,
            "contact_number": self.contact_number,
            "primary_id": self.primary_id,
            "secondary_id": self.secondary_id,
            "direction": self.direction.value,
            "counterpart": self.counterpart,
            "content": self.content,
            "content_type": self.content_type.value,
            "media_url": self.media_url,
            "media_mime_type": self.media_mime_type,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "reply_preview": self.reply_preview,
            "is_forwarded": self.is_forwarded,
            "raw_payload": self.raw_payload,
        }


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def infer_direction(message: Mapping[str, Any], parent: Mapping[str, Any], local_user: str) -> Direction:
    """Any single local-user signal makes the message outgoing."""
    signals = (
        first_value(message, "from"),
        first_value(parent, "from"),
        first_value(message, "direction"),
        first_value(message, "sender"),
    )
    if local_user in signals:
        return Direction.OUTGOING
    direction = (first_value(message, "direction") or first_value(parent, "direction") or "").lower()
    if direction in OUTBOUND_DIRECTIONS:
        return Direction.OUTGOING
    return Direction.INCOMING


def resolve_conversation_key(
    message: Mapping[str, Any],
    parent: Mapping[str, Any],
    direction: Direction,
    local_user: str,
) -> str:
    candidates = [
        first_value(message, "wa_id"),
        first_value(message, "from"),
        first_value(parent, "wa_id"),
        first_value(parent, "from"),
    ]
    if direction is Direction.OUTGOING:
        candidates += [first_value(message, "to"), first_value(parent, "to")]

    for candidate in candidates:
        if candidate and candidate != local_user:
            return candidate

    raise UnresolvableConversation(
        "Message names no conversation (wa_id/from/to)",
        payload=dict(message),
    )


def resolve_status(message: Mapping[str, Any], parent: Mapping[str, Any]) -> MessageStatus:
    for source in (message, parent):
        value = first_value(source, "status")
        if value is None:
            continue
        try:
            return MessageStatus(value.lower())
        except ValueError:
            continue
    return MessageStatus.SENT


def extract_reply_preview(message: Mapping[str, Any], limit: int = 100) -> Optional[str]:
    quoted = _mapping(message.get("context")).get("quoted_message")
    if isinstance(quoted, str):
        text = quoted
    elif isinstance(quoted, Mapping):
        text = first_value(quoted, "body", "text", "content")
    else:
        return None
    if not text:
        return None
    return text[:limit]


def normalize(
    raw: Mapping[str, Any],
    parent: Optional[Mapping[str, Any]] = None,
    *,
    now: Optional[datetime] = None,
    local_user: str = LOCAL_USER,
    source: Optional[str] = None,
    max_length: int = 4096,
    raw_fallback_length: int = 1000,
    reply_preview_length: int = 100,
) -> MessageDraft:
    """
    Build a ``MessageDraft`` from a message-like object.

    ``parent`` is the payload the message arrived in; it supplies fallbacks for
    the conversation key, display name, number, direction, time and status.

    Raises:
        UnresolvableConversation: when no conversation key source exists.
    """
    now = now or utcnow()
    message = _mapping(raw)
    parent = _mapping(parent)

    direction = infer_direction(message, parent, local_user)
    conversation_key = resolve_conversation_key(message, parent, direction, local_user)
    profile = _mapping(message.get("profile"))

    extracted = extract_content(
        message,
        max_length=max_length,
        raw_fallback_length=raw_fallback_length,
    )

    snapshot: Dict[str, Any] = {"original": raw, "processed_at": now.isoformat()}
    if source:
        snapshot["source"] = source

    return MessageDraft(
        conversation_key=conversation_key,
        display_name=(
            first_value(message, "name")
            or first_value(parent, "name")
            or first_value(profile, "name")
            or f"User {conversation_key}"
        ),
        contact_number=(
            first_value(message, "number")
            or first_value(parent, "number")
            or first_value(profile, "phone")
        ),
        identifiers=collect_identifiers(message),
        direction=direction,
        counterpart=first_value(message, "to") or first_value(parent, "to") or local_user,
        content=extracted.content,
        content_type=extracted.content_type,
        media_url=extracted.media_url,
        media_mime_type=extracted.media_mime_type,
        timestamp=resolve_timestamp(message, parent, now),
        status=resolve_status(message, parent),
        reply_preview=extract_reply_preview(message, reply_preview_length),
        is_forwarded=bool(message.get("forwarded") or message.get("is_forwarded")),
        raw_payload=snapshot,
    )
