"""
SQLAlchemy-backed message repository.

The only place that talks to the database. Everything above it works with
``Message`` rows and plain values.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, case, func, literal, or_, select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chathook.core.errors import DuplicateIdentifier, MessageNotFound
from chathook.core.logging import get_logger
from chathook.models.message import Direction, Message, MessageStatus, UTCDateTime
from chathook.services.identifiers import is_record_handle
from chathook.services.status import allowed_predecessors

logger = get_logger(__name__)


@dataclass
class MessageFilter:
    """
    Row filter for ``find_many``.

    ``identifiers`` are OR-composed across both identifier columns; the other
    fields are AND-ed. ``is_deleted=None`` disables the deletion filter.
    """

    conversation_key: Optional[str] = None
    is_deleted: Optional[bool] = False
    identifiers: Sequence[str] = ()
    match_record_handle: bool = False
    direction: Optional[Direction] = None
    statuses: Sequence[MessageStatus] = ()


def identifier_clause(values: Sequence[str], match_record_handle: bool = False):
    """Each value may sit in either identifier column (and optionally be a record handle)."""
    clauses = []
    for value in values:
        clauses.append(Message.primary_id == value)
        clauses.append(Message.secondary_id == value)
        if match_record_handle and is_record_handle(value):
            clauses.append(Message.id == value)
    return or_(*clauses)


# Display order; id breaks ties between rows stored in the same instant
NEWEST_FIRST = (Message.timestamp.desc(), Message.created_at.desc(), Message.id.desc())


def older_than_clause(anchor: Message):
    """Rows that sort after ``anchor`` in NEWEST_FIRST order."""
    return or_(
        Message.timestamp < anchor.timestamp,
        and_(Message.timestamp == anchor.timestamp, Message.created_at < anchor.created_at),
        and_(
            Message.timestamp == anchor.timestamp,
            Message.created_at == anchor.created_at,
            Message.id < anchor.id,
        ),
    )


def is_identifier_conflict(error: IntegrityError) -> bool:
    """True for a unique violation on one of the identifier columns."""
    text = str(error.orig).lower()
    is_unique = "unique" in text or "duplicate key" in text
    return is_unique and ("primary_id" in text or "secondary_id" in text)


def unread_clause():
    return and_(
        Message.direction == Direction.INCOMING.value,
        Message.status != MessageStatus.READ.value,
    )


class MessageRepository:
    """Find, insert and update ``Message`` rows through one session."""

    def __init__(self, db: Session):
        self.db = db

    def _apply_filter(self, query, message_filter: MessageFilter):
        if message_filter.conversation_key is not None:
            query = query.where(Message.conversation_key == message_filter.conversation_key)
        if message_filter.is_deleted is not None:
            query = query.where(Message.is_deleted.is_(message_filter.is_deleted))
        if message_filter.identifiers:
            query = query.where(
                identifier_clause(message_filter.identifiers, message_filter.match_record_handle)
            )
        if message_filter.direction is not None:
            query = query.where(Message.direction == message_filter.direction.value)
        if message_filter.statuses:
            query = query.where(Message.status.in_([status.value for status in message_filter.statuses]))
        return query

    def insert(self, record: Dict[str, Any]) -> Message:
        """
        Persist a new message.

        Raises:
            DuplicateIdentifier: when an identifier is already stored.
            IntegrityError: for any other constraint failure.
        """
        message = Message(**record)
        self.db.add(message)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if not is_identifier_conflict(e):
                raise
            raise DuplicateIdentifier(
                f"Identifier already stored: {record.get('primary_id') or record.get('secondary_id')}"
            ) from e
        self.db.refresh(message)
        return message

    def get(self, message_id: str) -> Optional[Message]:
        return self.db.get(Message, message_id)

    def get_or_raise(self, message_id: str) -> Message:
        message = self.get(message_id)
        if message is None:
            raise MessageNotFound(f"Message not found: {message_id}")
        return message

    def find_by_identifiers(self, values: Sequence[str]) -> Optional[Message]:
        if not values:
            return None
        query = select(Message).where(identifier_clause(values)).limit(1)
        return self.db.scalars(query).first()

    def find_many(self, message_filter: MessageFilter, limit: Optional[int] = None) -> List[Message]:
        query = self._apply_filter(select(Message), message_filter)
        query = query.order_by(Message.timestamp.asc(), Message.created_at.asc(), Message.id.asc())
        if limit is not None:
            query = query.limit(limit)
        return list(self.db.scalars(query).all())

    def update_status_forward(self, message_id: str, new_status: MessageStatus, now: datetime) -> int:
        """
        Move one message to ``new_status`` if that is a forward transition.

        The check and the write are a single conditional UPDATE, so two racing
        status events can never move a message backwards. Returns rows changed.
        """
        predecessors = [status.value for status in allowed_predecessors(new_status)]
        if not predecessors:
            return 0

        values: Dict[str, Any] = {"status": new_status.value, "updated_at": now}
        stamp = literal(now, type_=UTCDateTime())
        if new_status is MessageStatus.DELIVERED:
            values["delivered_at"] = func.coalesce(Message.delivered_at, stamp)
        elif new_status is MessageStatus.READ:
            values["read_at"] = func.coalesce(Message.read_at, stamp)

        result = self.db.execute(
            update(Message)
            .where(Message.id == message_id, Message.status.in_(predecessors))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount or 0

    def refresh(self, message: Message) -> Message:
        self.db.refresh(message)
        return message

    def count_by_conversation(self, conversation_key: str, include_deleted: bool = False) -> int:
        query = select(func.count(Message.id)).where(Message.conversation_key == conversation_key)
        if not include_deleted:
            query = query.where(Message.is_deleted.is_(False))
        return self.db.scalar(query) or 0

    def latest_in_conversation(self, conversation_key: str) -> Optional[Message]:
        query = (
            select(Message)
            .where(Message.conversation_key == conversation_key, Message.is_deleted.is_(False))
            .order_by(*NEWEST_FIRST)
            .limit(1)
        )
        return self.db.scalars(query).first()

    def latest_per_conversation(self) -> List[Message]:
        """The newest non-deleted message of every conversation."""
        rank = func.row_number().over(
            partition_by=Message.conversation_key,
            order_by=NEWEST_FIRST,
        ).label("rank")
        ranked = select(Message.id, rank).where(Message.is_deleted.is_(False)).subquery()
        query = (
            select(Message)
            .join(ranked, ranked.c.id == Message.id)
            .where(ranked.c.rank == 1)
        )
        return list(self.db.scalars(query).all())

    def conversation_counts(self) -> Dict[str, Dict[str, int]]:
        """Per conversation: total non-deleted messages and unread incoming ones."""
        query = (
            select(
                Message.conversation_key,
                func.count(Message.id).label("total"),
                func.sum(case((unread_clause(), 1), else_=0)).label("unread"),
            )
            .where(Message.is_deleted.is_(False))
            .group_by(Message.conversation_key)
        )
        return {
            key: {"total": total or 0, "unread": int(unread or 0)}
            for key, total, unread in self.db.execute(query).all()
        }

    def list_conversation_page(
        self,
        conversation_key: str,
        *,
        offset: int,
        limit: int,
        before: Optional[Message] = None,
        include_deleted: bool = False,
    ) -> List[Message]:
        """A page counted from the newest message, returned newest-first.

        ``before`` is an anchor row; only messages strictly after it in
        newest-first order are returned.
        """
        query = select(Message).where(Message.conversation_key == conversation_key)
        if not include_deleted:
            query = query.where(Message.is_deleted.is_(False))
        if before is not None:
            query = query.where(older_than_clause(before))
        query = (
            query.order_by(*NEWEST_FIRST)
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.scalars(query).all())

    def set_deleted(self, message: Message) -> Message:
        message.is_deleted = True
        self.db.commit()
        self.db.refresh(message)
        return message

    def toggle_starred(self, message: Message) -> Message:
        message.is_starred = not message.is_starred
        self.db.commit()
        self.db.refresh(message)
        return message

    def delete_all(self) -> int:
        result = self.db.execute(delete(Message))
        self.db.commit()
        logger.info("Deleted all messages", extra={"extra_data": {"deleted": result.rowcount}})
        return result.rowcount or 0
