"""
Content extraction from message-like objects.
"""
import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from chathook.models.message import ContentType

MEDIA_MARKER = "\U0001F4CE"

# Medium sub-objects in priority order, with the payload key for each
MEDIUM_FIELDS = (
    (ContentType.IMAGE, "image"),
    (ContentType.AUDIO, "audio"),
    (ContentType.VIDEO, "video"),
    (ContentType.DOCUMENT, "document"),
    (ContentType.LOCATION, "location"),
    (ContentType.CONTACT, "contacts"),
    (ContentType.STICKER, "sticker"),
)

CONTENT_TYPE_ALIASES = {
    "contacts": ContentType.CONTACT,
}


@dataclass(frozen=True)
class ExtractedContent:
    content: str
    content_type: ContentType
    media_url: Optional[str] = None
    media_mime_type: Optional[str] = None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _nested_text(value: Any, key: str) -> Optional[str]:
    if isinstance(value, Mapping):
        return _text(value.get(key))
    return None


def declared_content_type(message: Mapping[str, Any]) -> Optional[ContentType]:
    """The explicit ``type``/``content_type`` field, when it names a known type."""
    for field in ("type", "content_type"):
        value = message.get(field)
        if not isinstance(value, str):
            continue
        value = value.strip().lower()
        if value in CONTENT_TYPE_ALIASES:
            return CONTENT_TYPE_ALIASES[value]
        try:
            return ContentType(value)
        except ValueError:
            continue
    return None


def find_medium(message: Mapping[str, Any]):
    """Return ``(content_type, sub_object)`` for the highest priority medium present."""
    for content_type, field in MEDIUM_FIELDS:
        sub_object = message.get(field)
        if sub_object:
            return content_type, sub_object
    if message.get("contact"):
        return ContentType.CONTACT, message["contact"]
    return None, None


def extract_text(message: Mapping[str, Any], medium_object: Any = None) -> Optional[str]:
    """Walk the known text spellings in order and return the first non-blank one."""
    return (
        _nested_text(message.get("text"), "body")
        or _nested_text(message.get("body"), "text")
        or _text(message.get("content"))
        or _text(message.get("text"))
        or _text(message.get("caption"))
        or _nested_text(medium_object, "caption")
    )


def raw_fallback(message: Any, limit: int) -> str:
    return json.dumps(message, default=str, ensure_ascii=False)[:limit]


def extract_content(
    message: Mapping[str, Any],
    *,
    max_length: int = 4096,
    raw_fallback_length: int = 1000,
) -> ExtractedContent:
    """
    Derive display content, content type and media details from a message.

    The result is never empty: when there is no text, non-text messages get a
    media marker and anything else gets a truncated JSON rendering of itself.
    """
    medium, medium_object = find_medium(message)
    content_type = medium or declared_content_type(message) or ContentType.TEXT

    media_url = None
    media_mime_type = None
    if isinstance(medium_object, Mapping):
        media_url = _text(medium_object.get("link")) or _text(medium_object.get("url"))
        media_mime_type = _text(medium_object.get("mime_type"))

    content = extract_text(message, medium_object)
    if content is None and content_type is not ContentType.TEXT:
        content = f"{MEDIA_MARKER} {content_type.value}"
    if content is None:
        content = raw_fallback(message, raw_fallback_length)

    return ExtractedContent(
        content=content[:max_length],
        content_type=content_type,
        media_url=media_url,
        media_mime_type=media_mime_type,
    )
