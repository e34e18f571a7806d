"""
Ingestion pipeline: classify, normalize, deduplicate, persist, reconcile.

One call handles one arbitrary payload (an object, an array of objects, or
nested arrays of them). Entries are processed independently, so a bad entry
is counted and skipped while its siblings go through.
"""
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from chathook.core.config import Settings, get_settings
from chathook.core.errors import (
    ChatHookError,
    DuplicateIdentifier,
    InvalidContent,
    UnrecognizedPayload,
)
from chathook.core.logging import get_logger
from chathook.models.message import ContentType, Direction, Message, MessageStatus, utcnow
from chathook.services.classifier import (
    Classification,
    PayloadKind,
    classify,
    classify_one,
    iter_payload_items,
)
from chathook.services.dedup import find_existing
from chathook.services.events import Event, MessageCreated
from chathook.services.identifiers import MessageIdentifiers
from chathook.services.normalizer import MessageDraft, normalize
from chathook.services.repository import MessageRepository
from chathook.services.status import StatusReconciler, status_entry_identifier, status_entry_value

logger = get_logger(__name__)


@dataclass
class EntryFailure:
    kind: str
    detail: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "detail": self.detail}


@dataclass
class BatchResult:
    """Per-entry counts for one ingested payload."""

    inserted: int = 0
    updated: int = 0
    duplicates: int = 0
    errors: int = 0
    matched: int = 0
    status_updates: int = 0
    contacts: int = 0
    failures: List[EntryFailure] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)

    def record_failure(self, kind: str, detail: str) -> None:
        self.errors += 1
        self.failures.append(EntryFailure(kind=kind, detail=detail))

    def merge(self, other: "BatchResult") -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.duplicates += other.duplicates
        self.errors += other.errors
        self.matched += other.matched
        self.status_updates += other.status_updates
        self.contacts += other.contacts
        self.failures.extend(other.failures)
        self.events.extend(other.events)

    @property
    def unmatched_status_only(self) -> bool:
        """Only status updates were seen and none of them found a message."""
        return (
            self.status_updates > 0
            and self.matched == 0
            and self.inserted == 0
            and self.duplicates == 0
            and self.contacts == 0
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "matched": self.matched,
            "status_updates": self.status_updates,
            "contacts": self.contacts,
            "failures": [failure.to_dict() for failure in self.failures],
        }


def generate_local_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class IngestionService:
    """Runs payloads through the pipeline against one repository."""

    def __init__(
        self,
        repository: MessageRepository,
        settings: Optional[Settings] = None,
        source: Optional[str] = None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.source = source
        self.reconciler = StatusReconciler(repository)

    def ingest(self, payload: Any) -> BatchResult:
        """
        Ingest one payload.

        Raises:
            UnrecognizedPayload: when a single-object payload (or an empty
                array) cannot be classified at all. Unrecognized elements of a
                non-empty array are counted as errors instead.
        """
        result = BatchResult()

        if not isinstance(payload, (list, tuple)):
            for classification in classify(payload):
                self._dispatch(classification, result)
            self._log_result(result)
            return result

        items = list(iter_payload_items(payload))
        if not items:
            raise UnrecognizedPayload("Empty payload array", payload=payload)

        for item in items:
            try:
                classification = classify_one(item)
            except UnrecognizedPayload as e:
                logger.warning("Skipping unrecognized array element", extra={"extra_data": {"detail": e.detail}})
                result.record_failure(e.kind, e.detail)
                continue
            self._dispatch(classification, result)

        self._log_result(result)
        return result

    def _dispatch(self, classification: Classification, result: BatchResult) -> None:
        if classification.kind is PayloadKind.CONTACT_BATCH:
            result.contacts += len(classification.entries)
            logger.info(
                "Contacts acknowledged",
                extra={"extra_data": {"contacts": len(classification.entries)}},
            )
            return

        if classification.kind is PayloadKind.STATUS_BATCH:
            handler = self._ingest_status
        else:
            handler = self._ingest_message

        for entry in classification.entries:
            try:
                handler(entry, classification.parent, result)
            except ChatHookError as e:
                logger.warning(
                    "Skipping payload entry",
                    extra={"extra_data": {"kind": e.kind, "detail": e.detail}},
                )
                result.record_failure(e.kind, e.detail)
            except SQLAlchemyError as e:
                self.repository.db.rollback()
                logger.error("Repository failure while ingesting entry", exc_info=True)
                result.record_failure("repository_error", str(e))

    def _ingest_message(self, entry: Any, parent: Mapping[str, Any], result: BatchResult) -> None:
        if not isinstance(entry, Mapping):
            raise UnrecognizedPayload(
                f"Message entry must be an object, got {type(entry).__name__}",
                payload=entry,
            )

        draft = normalize(
            entry,
            parent,
            local_user=self.settings.local_user_id,
            source=self.source,
            max_length=self.settings.content_max_length,
            raw_fallback_length=self.settings.raw_fallback_length,
            reply_preview_length=self.settings.reply_preview_length,
        )

        existing = find_existing(self.repository, draft)
        if existing is not None:
            logger.debug(
                "Duplicate message, skipping",
                extra={"extra_data": {"identifiers": draft.identifiers.values(), "existing": existing.id}},
            )
            result.duplicates += 1
            return

        try:
            message = self.repository.insert(draft.to_record())
        except DuplicateIdentifier:
            # Another request stored the same ids between the check and the insert
            logger.info(
                "Duplicate message detected via constraint",
                extra={"extra_data": {"identifiers": draft.identifiers.values()}},
            )
            result.duplicates += 1
            return

        result.inserted += 1
        result.events.append(MessageCreated.from_message(message))
        logger.info(
            "Message ingested",
            extra={
                "extra_data": {
                    "message_id": message.id,
                    "conversation_key": message.conversation_key,
                    "content_type": message.content_type,
                }
            },
        )

    def _ingest_status(self, entry: Any, parent: Mapping[str, Any], result: BatchResult) -> None:
        identifier = status_entry_identifier(entry, parent)
        new_status = status_entry_value(entry, parent)

        outcome = self.reconciler.apply_status(identifier, new_status)
        result.status_updates += 1
        result.matched += outcome.matched
        result.updated += outcome.modified
        result.events.extend(outcome.events)

        if outcome.matched == 0:
            logger.warning(
                "Status update matched no messages",
                extra={"extra_data": {"identifier": identifier, "status": new_status.value}},
            )

    def send_local_message(
        self,
        conversation_key: str,
        content: str,
        content_type: str = ContentType.TEXT.value,
        display_name: Optional[str] = None,
        contact_number: Optional[str] = None,
    ) -> Tuple[Message, List[Event]]:
        """
        Store a message composed by the local user.

        The message is inserted as ``pending`` and immediately moved to
        ``sent``; viewers get the creation event followed by the status change.

        Raises:
            InvalidContent: for blank content or an unknown content type.
        """
        conversation_key = (conversation_key or "").strip()
        content = (content or "").strip()
        if not conversation_key:
            raise InvalidContent("conversation_key is required")
        if not content:
            raise InvalidContent("Message content cannot be empty")
        try:
            kind = ContentType(content_type)
        except ValueError:
            raise InvalidContent(f"Unknown content type: {content_type!r}")

        now = utcnow()
        draft = MessageDraft(
            conversation_key=conversation_key,
            display_name=display_name or f"User {conversation_key}",
            contact_number=contact_number,
            identifiers=MessageIdentifiers(primary_id=generate_local_id()),
            direction=Direction.OUTGOING,
            counterpart=conversation_key,
            content=content[: self.settings.content_max_length],
            content_type=kind,
            timestamp=now,
            status=MessageStatus.PENDING,
            raw_payload={
                "original": {
                    "conversation_key": conversation_key,
                    "content": content,
                    "content_type": kind.value,
                },
                "processed_at": now.isoformat(),
                "source": "local",
            },
        )

        message = self.repository.insert(draft.to_record())
        events: List[Event] = [MessageCreated.from_message(message)]

        outcome = self.reconciler.apply_status(message.id, MessageStatus.SENT, now)
        events.extend(outcome.events)
        self.repository.refresh(message)

        logger.info(
            "Local message sent",
            extra={"extra_data": {"message_id": message.id, "conversation_key": conversation_key}},
        )
        return message, events

    def _log_result(self, result: BatchResult) -> None:
        logger.info(
            "Payload ingested",
            extra={
                "extra_data": {
                    "inserted": result.inserted,
                    "updated": result.updated,
                    "duplicates": result.duplicates,
                    "errors": result.errors,
                    "source": self.source,
                }
            },
        )
