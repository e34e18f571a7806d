"""
Tests for conversation aggregation, paging and marking read.
"""
from datetime import datetime, timedelta, timezone

import pytest

from chathook.models.message import MessageStatus
from chathook.services.conversations import ConversationService

T0 = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(repository):
    return ConversationService(repository)


def add(repository, key, minutes, status="sent", direction="incoming", **overrides):
    record = {
        "conversation_key": key,
        "content": f"{key} at {minutes}",
        "timestamp": T0 + timedelta(minutes=minutes),
        "status": status,
        "direction": direction,
    }
    record.update(overrides)
    return repository.insert(record)


class TestListConversations:
    """Tests for conversation summaries."""

    def test_empty(self, service):
        assert service.list_conversations() == []

    def test_aggregation(self, service, repository):
        add(repository, "A", 1, status="sent")
        add(repository, "A", 2, status="delivered")
        add(repository, "A", 3, status="read")
        add(repository, "A", 4, status="sent", direction="outgoing")
        add(repository, "A", 5, status="sent", is_deleted=True)
        add(repository, "B", 10, status="read")
        add(repository, "B", 7, status="sent")

        summaries = {summary.conversation_key: summary for summary in service.list_conversations()}

        assert summaries["A"].unread_count == 2
        assert summaries["A"].last_timestamp == T0 + timedelta(minutes=4)
        assert summaries["A"].last_direction == "outgoing"
        assert summaries["A"].total_messages == 4
        assert summaries["B"].unread_count == 1
        assert summaries["B"].last_timestamp == T0 + timedelta(minutes=10)
        assert summaries["B"].last_status == "read"

    def test_newest_conversation_first(self, service, repository):
        add(repository, "old", 1)
        add(repository, "new", 9)
        add(repository, "mid", 5)
        assert [s.conversation_key for s in service.list_conversations()] == ["new", "mid", "old"]

    def test_fully_deleted_conversation_is_hidden(self, service, repository):
        add(repository, "gone", 1, is_deleted=True)
        assert service.list_conversations() == []

    def test_default_display_name(self, service, repository):
        add(repository, "42", 1)
        assert service.list_conversations()[0].display_name == "User 42"


class TestListMessages:
    """Tests for paging through a conversation."""

    def test_oldest_first_within_page(self, service, repository):
        for minute in (3, 1, 2):
            add(repository, "A", minute)
        contents = [m.content for m in service.list_messages("A")]
        assert contents == ["A at 1", "A at 2", "A at 3"]

    def test_pages_count_back_from_newest(self, service, repository):
        for minute in range(5):
            add(repository, "A", minute)
        first = service.list_messages("A", page=1, page_size=2)
        second = service.list_messages("A", page=2, page_size=2)
        third = service.list_messages("A", page=3, page_size=2)

        assert [m.content for m in first] == ["A at 3", "A at 4"]
        assert [m.content for m in second] == ["A at 1", "A at 2"]
        assert [m.content for m in third] == ["A at 0"]

    def test_before_anchor(self, service, repository):
        messages = [add(repository, "A", minute) for minute in range(4)]
        older = service.list_messages("A", before_id=messages[2].id)
        assert [m.content for m in older] == ["A at 0", "A at 1"]

    def test_before_anchor_with_shared_timestamp(self, service, repository):
        for label in ("a", "b", "c"):
            add(repository, "A", 0, content=label)

        newest = service.list_messages("A", page_size=2)
        rest = service.list_messages("A", page_size=2, before_id=newest[0].id)

        assert len(newest) == 2
        assert len(rest) == 1
        assert {m.content for m in newest + rest} == {"a", "b", "c"}

    def test_unknown_anchor_is_ignored(self, service, repository):
        add(repository, "A", 1)
        assert len(service.list_messages("A", before_id="missing")) == 1

    def test_deleted_hidden_unless_requested(self, service, repository):
        add(repository, "A", 1)
        add(repository, "A", 2, is_deleted=True)
        assert len(service.list_messages("A")) == 1
        assert len(service.list_messages("A", include_deleted=True)) == 2

    def test_listing_does_not_mark_read(self, service, repository):
        message = add(repository, "A", 1)
        service.list_messages("A")
        repository.refresh(message)
        assert message.status == "sent"


class TestConversationInfo:
    """Tests for conversation info."""

    def test_info(self, service, repository):
        add(repository, "A", 1, display_name="Old Name")
        add(repository, "A", 2, display_name="Ana", contact_number="+1555")
        info = service.get_conversation_info("A")
        assert info.display_name == "Ana"
        assert info.contact_number == "+1555"
        assert info.message_count == 2

    def test_unknown_conversation(self, service):
        assert service.get_conversation_info("nobody") is None


class TestMarkRead:
    """Tests for marking a conversation read."""

    def test_marks_incoming_unread(self, service, repository):
        incoming = add(repository, "A", 1, primary_id="in-1")
        delivered = add(repository, "A", 2, status="delivered")
        outgoing = add(repository, "A", 3, direction="outgoing")
        other = add(repository, "B", 1)

        outcome = service.mark_conversation_read("A")

        assert outcome.updated == 2
        assert {event.message_id for event in outcome.events} == {incoming.id, delivered.id}
        assert all(event.new_status is MessageStatus.READ for event in outcome.events)
        echoes = {event.message_id: event.identifier_echo for event in outcome.events}
        assert echoes[incoming.id] == "in-1"
        assert echoes[delivered.id] == delivered.id

        for message in (incoming, delivered, outgoing, other):
            repository.refresh(message)
        assert incoming.status == "read"
        assert incoming.read_at is not None
        assert outgoing.status == "sent"
        assert other.status == "sent"

    def test_second_call_is_noop(self, service, repository):
        add(repository, "A", 1)
        service.mark_conversation_read("A")
        assert service.mark_conversation_read("A").updated == 0
        assert service.list_conversations()[0].unread_count == 0

    def test_failed_incoming_stays_unread(self, service, repository):
        failed = add(repository, "A", 1, status="failed")

        assert service.mark_conversation_read("A").updated == 0
        repository.refresh(failed)
        assert failed.status == "failed"
        assert service.list_conversations()[0].unread_count == 1
