"""
Timestamp and identifier normalization.

Upstream dialects spell the same facts differently: times arrive as epoch
seconds, epoch milliseconds or calendar strings, and a message may carry up to
three ids that different senders file under different names.
"""
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple

from dateutil import parser as date_parser
from pydantic import TypeAdapter, ValidationError

# Epoch values at or above this are milliseconds
MILLISECONDS_THRESHOLD = 10 ** 12

PRIMARY_ID_FIELDS = ("id", "msg_id", "message_id")
SECONDARY_ID_FIELDS = ("meta_msg_id", "wamid")
TRANSPORT_ID_FIELD = "wamid"
TIMESTAMP_FIELDS = ("timestamp", "ts")

RECORD_HANDLE_PATTERN = re.compile(r"^[0-9a-f]{32}$")

_datetime_adapter = TypeAdapter(datetime)


def first_value(source: Optional[Mapping[str, Any]], *fields: str) -> Optional[str]:
    """Return the first non-empty field of ``source`` as a stripped string."""
    if not isinstance(source, Mapping):
        return None
    for field in fields:
        value = source.get(field)
        if value is None or isinstance(value, (bool, dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


@dataclass(frozen=True)
class MessageIdentifiers:
    """The identifier slots a payload may carry for one message."""

    primary_id: Optional[str] = None
    secondary_id: Optional[str] = None
    transport_id: Optional[str] = None

    def values(self) -> Tuple[str, ...]:
        """Distinct non-empty ids in fallback order."""
        seen = []
        for value in (self.primary_id, self.secondary_id, self.transport_id):
            if value and value not in seen:
                seen.append(value)
        return tuple(seen)

    def __bool__(self) -> bool:
        return bool(self.values())


def collect_identifiers(message: Mapping[str, Any]) -> MessageIdentifiers:
    return MessageIdentifiers(
        primary_id=first_value(message, *PRIMARY_ID_FIELDS),
        secondary_id=first_value(message, *SECONDARY_ID_FIELDS),
        transport_id=first_value(message, TRANSPORT_ID_FIELD),
    )


def is_record_handle(value: str) -> bool:
    return bool(RECORD_HANDLE_PATTERN.match(value or ""))


def _from_epoch(value: float) -> Optional[datetime]:
    if math.isnan(value) or math.isinf(value):
        return None
    seconds = value if abs(value) < MILLISECONDS_THRESHOLD else value / 1000
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_calendar(text: str) -> Optional[datetime]:
    """ISO 8601 first, then free-form dates such as RFC 2822 or "January 15, 2024"."""
    try:
        return _datetime_adapter.validate_python(text)
    except ValidationError:
        pass
    try:
        return date_parser.parse(text)
    except (ValueError, OverflowError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Convert an upstream timestamp into an aware UTC datetime.

    Numbers (and digit-only strings) are epoch seconds below 10**12 and epoch
    milliseconds otherwise. Other strings are parsed as calendar timestamps
    (ISO 8601, RFC 2822 and long-form dates); naive results are taken as UTC.
    Returns None when nothing sensible comes out.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return _from_epoch(float(value))

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if re.fullmatch(r"-?\d+(\.\d+)?", text):
            return _from_epoch(float(text))
        parsed = _parse_calendar(text)
        if parsed is None:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def resolve_timestamp(
    message: Mapping[str, Any],
    parent: Optional[Mapping[str, Any]],
    now: datetime,
) -> datetime:
    """Message-level time, then parent-level time, then ``now``."""
    for source in (message, parent):
        if not isinstance(source, Mapping):
            continue
        for field in TIMESTAMP_FIELDS:
            parsed = parse_timestamp(source.get(field))
            if parsed is not None:
                return parsed
    return now
