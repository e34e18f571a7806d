"""
Status ordering and reconciliation.

Statuses only ever move forward: pending < sent < delivered < read, with
``failed`` reachable only from pending or sent. Anything else is a no-op, so
replaying or reordering status events is harmless.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, List, Mapping, Optional, Tuple

from chathook.core.errors import InvalidStatus, NoIdentifier
from chathook.core.logging import get_logger
from chathook.models.message import MessageStatus, utcnow
from chathook.services.events import StatusChanged
from chathook.services.identifiers import PRIMARY_ID_FIELDS, SECONDARY_ID_FIELDS, first_value

if TYPE_CHECKING:
    from chathook.services.repository import MessageRepository

logger = get_logger(__name__)

STATUS_ORDER: Tuple[MessageStatus, ...] = (
    MessageStatus.PENDING,
    MessageStatus.SENT,
    MessageStatus.DELIVERED,
    MessageStatus.READ,
)
FAILABLE: Tuple[MessageStatus, ...] = (MessageStatus.PENDING, MessageStatus.SENT)

STATUS_ID_FIELDS = PRIMARY_ID_FIELDS + SECONDARY_ID_FIELDS
DEFAULT_STATUS_UPDATE = MessageStatus.DELIVERED


def status_rank(status: MessageStatus) -> Optional[int]:
    """Position in the delivery order; None for ``failed``."""
    try:
        return STATUS_ORDER.index(status)
    except ValueError:
        return None


def is_forward_transition(current: MessageStatus, new: MessageStatus) -> bool:
    if new is MessageStatus.FAILED:
        return current in FAILABLE
    current_rank = status_rank(current)
    if current_rank is None:
        return False
    return status_rank(new) > current_rank


def allowed_predecessors(new: MessageStatus) -> Tuple[MessageStatus, ...]:
    """Every status a message may be in for ``new`` to be applied."""
    return tuple(status for status in MessageStatus if is_forward_transition(status, new))


def parse_status(value: Any) -> MessageStatus:
    if isinstance(value, MessageStatus):
        return value
    try:
        return MessageStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidStatus(f"Unknown status: {value!r}", payload=value)


def status_entry_identifier(entry: Mapping[str, Any], parent: Optional[Mapping[str, Any]] = None) -> str:
    """
    The message id a status entry refers to.

    Raises:
        NoIdentifier: when neither the entry nor its payload carries an id.
    """
    identifier = first_value(entry, *STATUS_ID_FIELDS) or first_value(parent, "id")
    if not identifier:
        raise NoIdentifier("Status update carries no message id", payload=entry)
    return identifier


def status_entry_value(entry: Mapping[str, Any], parent: Optional[Mapping[str, Any]] = None) -> MessageStatus:
    value = (
        first_value(entry, "status", "status_update")
        or first_value(parent, "status")
    )
    if value is None:
        return DEFAULT_STATUS_UPDATE
    return parse_status(value)


@dataclass
class StatusOutcome:
    matched: int = 0
    modified: int = 0
    events: List[StatusChanged] = field(default_factory=list)


class StatusReconciler:
    """Applies status values to every message a given identifier resolves to."""

    def __init__(self, repository: "MessageRepository"):
        self.repository = repository

    def apply_status(
        self,
        identifier: str,
        new_status: MessageStatus,
        now: Optional[datetime] = None,
    ) -> StatusOutcome:
        from chathook.services.repository import MessageFilter

        now = now or utcnow()
        matches = self.repository.find_many(
            MessageFilter(identifiers=[identifier], match_record_handle=True, is_deleted=None)
        )
        outcome = StatusOutcome(matched=len(matches))

        for message in matches:
            if not is_forward_transition(MessageStatus(message.status), new_status):
                continue
            if not self.repository.update_status_forward(message.id, new_status, now):
                # Lost a race with a newer status; the newer one stands
                continue
            self.repository.refresh(message)
            outcome.modified += 1
            outcome.events.append(
                StatusChanged(
                    conversation_key=message.conversation_key,
                    identifier_echo=identifier,
                    new_status=new_status,
                    message_id=message.id,
                )
            )

        logger.info(
            "Status applied",
            extra={
                "extra_data": {
                    "identifier": identifier,
                    "status": new_status.value,
                    "matched": outcome.matched,
                    "modified": outcome.modified,
                }
            },
        )
        return outcome
