"""
Conversation views derived from the message table.

Nothing here is cached: summaries are recomputed from the stored messages on
every call, so they cannot drift from them.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from chathook.core.logging import get_logger
from chathook.models.message import Direction, Message, MessageStatus, utcnow
from chathook.services.events import StatusChanged
from chathook.services.repository import MessageFilter, MessageRepository
from chathook.services.status import allowed_predecessors

logger = get_logger(__name__)


@dataclass
class ConversationSummary:
    conversation_key: str
    display_name: Optional[str]
    contact_number: Optional[str]
    last_message_content: str
    last_message_content_type: str
    last_timestamp: datetime
    last_status: str
    last_direction: str
    unread_count: int = 0
    total_messages: int = 0


@dataclass
class ConversationInfo:
    conversation_key: str
    display_name: Optional[str]
    contact_number: Optional[str]
    message_count: int


@dataclass
class ReadOutcome:
    updated: int = 0
    events: List[StatusChanged] = field(default_factory=list)


class ConversationService:
    """Read-side queries over conversations, plus marking them read."""

    def __init__(self, repository: MessageRepository):
        self.repository = repository

    def list_conversations(self) -> List[ConversationSummary]:
        """Summaries of every conversation with live messages, newest first."""
        counts = self.repository.conversation_counts()
        summaries = []
        for latest in self.repository.latest_per_conversation():
            group = counts.get(latest.conversation_key, {})
            summaries.append(
                ConversationSummary(
                    conversation_key=latest.conversation_key,
                    display_name=latest.display_name or f"User {latest.conversation_key}",
                    contact_number=latest.contact_number,
                    last_message_content=latest.content,
                    last_message_content_type=latest.content_type,
                    last_timestamp=latest.timestamp,
                    last_status=latest.status,
                    last_direction=latest.direction,
                    unread_count=group.get("unread", 0),
                    total_messages=group.get("total", 0),
                )
            )
        summaries.sort(key=lambda summary: summary.last_timestamp, reverse=True)
        return summaries

    def list_messages(
        self,
        conversation_key: str,
        page: int = 1,
        page_size: int = 50,
        before_id: Optional[str] = None,
        include_deleted: bool = False,
    ) -> List[Message]:
        """
        One page of a conversation in display order (oldest first).

        Pages count back from the newest message. ``before_id`` restricts the
        page to messages strictly older than that message; an unknown anchor is
        ignored. Reading a page never marks anything read.
        """
        before: Optional[Message] = None
        if before_id:
            anchor = self.repository.get(before_id)
            if anchor is not None and anchor.conversation_key == conversation_key:
                before = anchor

        page = max(page, 1)
        messages = self.repository.list_conversation_page(
            conversation_key,
            offset=(page - 1) * page_size,
            limit=page_size,
            before=before,
            include_deleted=include_deleted,
        )
        messages.reverse()
        return messages

    def get_conversation_info(self, conversation_key: str) -> Optional[ConversationInfo]:
        latest = self.repository.latest_in_conversation(conversation_key)
        if latest is None:
            return None
        return ConversationInfo(
            conversation_key=conversation_key,
            display_name=latest.display_name or f"User {conversation_key}",
            contact_number=latest.contact_number,
            message_count=self.repository.count_by_conversation(conversation_key),
        )

    def mark_conversation_read(self, conversation_key: str) -> ReadOutcome:
        """Move every unread incoming message of the conversation to ``read``."""
        unread = self.repository.find_many(
            MessageFilter(
                conversation_key=conversation_key,
                direction=Direction.INCOMING,
                statuses=allowed_predecessors(MessageStatus.READ),
            )
        )
        now = utcnow()
        outcome = ReadOutcome()
        for message in unread:
            if not self.repository.update_status_forward(message.id, MessageStatus.READ, now):
                continue
            self.repository.refresh(message)
            outcome.updated += 1
            outcome.events.append(
                StatusChanged(
                    conversation_key=conversation_key,
                    identifier_echo=message.primary_id or message.id,
                    new_status=MessageStatus.READ,
                    message_id=message.id,
                )
            )

        logger.info(
            "Conversation marked read",
            extra={"extra_data": {"conversation_key": conversation_key, "updated": outcome.updated}},
        )
        return outcome
