"""
Payload classification.

Webhook payloads come in several loosely related dialects. ``classify`` sorts
one payload into message, status or contact batches using an ordered rule
list; the first rule that matches wins.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, Tuple

from chathook.core.errors import UnrecognizedPayload

IDENTIFIER_FIELDS = ("id", "msg_id", "message_id", "meta_msg_id", "wamid")
CONTENT_FIELDS = ("content", "text", "body", "caption")


class PayloadKind(str, enum.Enum):
    MESSAGE_BATCH = "message_batch"
    STATUS_BATCH = "status_batch"
    CONTACT_BATCH = "contact_batch"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Classification:
    """A batch of entries of one kind, with the payload they were found in."""

    kind: PayloadKind
    entries: Tuple[Any, ...]
    parent: Mapping[str, Any] = field(default_factory=dict)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _entries(collection: Any) -> Tuple[Any, ...]:
    if _is_sequence(collection):
        return tuple(collection)
    return (collection,)


def _message_rule(payload: Mapping[str, Any]) -> Optional[Classification]:
    if payload.get("messages") is not None:
        entries = _entries(payload["messages"])
    elif payload.get("type") == "message":
        entries = (payload.get("message") or payload,)
    elif payload.get("message"):
        entries = (payload["message"],)
    else:
        return None
    return Classification(PayloadKind.MESSAGE_BATCH, entries, payload)


def _status_rule(payload: Mapping[str, Any]) -> Optional[Classification]:
    if payload.get("statuses") is not None:
        entries = _entries(payload["statuses"])
    elif payload.get("type") == "status" or payload.get("status_update"):
        entries = (payload,)
    else:
        return None
    return Classification(PayloadKind.STATUS_BATCH, entries, payload)


def _contact_rule(payload: Mapping[str, Any]) -> Optional[Classification]:
    if payload.get("contacts") is None:
        return None
    return Classification(PayloadKind.CONTACT_BATCH, _entries(payload["contacts"]), payload)


def _fallback_rule(payload: Mapping[str, Any]) -> Optional[Classification]:
    for name in IDENTIFIER_FIELDS + CONTENT_FIELDS:
        value = payload.get(name)
        if value not in (None, "", {}, []):
            return Classification(PayloadKind.UNKNOWN, (payload,), payload)
    return None


RULES: Sequence[Callable[[Mapping[str, Any]], Optional[Classification]]] = (
    _message_rule,
    _status_rule,
    _contact_rule,
    _fallback_rule,
)


def iter_payload_items(payload: Any) -> Iterator[Any]:
    """Yield the non-sequence leaves of a payload, flattening nested sequences."""
    if _is_sequence(payload):
        for item in payload:
            yield from iter_payload_items(item)
    else:
        yield payload


def classify_one(payload: Any) -> Classification:
    if not isinstance(payload, Mapping):
        raise UnrecognizedPayload(
            f"Expected a JSON object, got {type(payload).__name__}",
            payload=payload,
        )
    for rule in RULES:
        classification = rule(payload)
        if classification is not None:
            return classification
    raise UnrecognizedPayload("Unrecognized payload format", payload=payload)


def classify(payload: Any) -> List[Classification]:
    """
    Classify a payload into one or more batches.

    Objects produce exactly one classification; sequences are classified
    element by element (recursively) and the results concatenated.

    Raises:
        UnrecognizedPayload: when no rule matches and no message-like field exists.
    """
    return [classify_one(item) for item in iter_payload_items(payload)]
