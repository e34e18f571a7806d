"""
Tests for the ingestion pipeline against an in-memory store.
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

import chathook.services.ingest as ingest_module
from chathook.core.errors import DuplicateIdentifier, InvalidContent, UnrecognizedPayload
from chathook.models.message import MessageStatus
from chathook.services.events import MessageCreated, StatusChanged
from chathook.services.ingest import BatchResult, IngestionService, generate_local_id
from chathook.services.repository import MessageFilter


@pytest.fixture
def service(repository, settings):
    return IngestionService(repository, settings=settings)


def stored(repository, **filter_fields):
    return repository.find_many(MessageFilter(**filter_fields))


class TestIngestMessages:
    """Tests for message batches."""

    def test_end_to_end_scenario(self, service, repository):
        result = service.ingest(
            {"messages": [{"from": "55511", "text": {"body": "hi"}, "timestamp": 1700000000}]}
        )

        assert result.inserted == 1
        assert result.errors == 0
        messages = stored(repository)
        assert len(messages) == 1
        message = messages[0]
        assert message.conversation_key == "55511"
        assert message.content == "hi"
        assert message.content_type == "text"
        assert message.direction == "incoming"
        assert message.status == "sent"
        assert message.timestamp == datetime.fromtimestamp(1700000000, tz=timezone.utc)

    def test_created_event(self, service):
        result = service.ingest({"messages": [{"id": "m1", "from": "1", "text": "hi"}]})
        assert len(result.events) == 1
        event = result.events[0]
        assert isinstance(event, MessageCreated)
        assert event.conversation_key == "1"
        assert "raw_payload" not in event.to_data()

    def test_batch_partial_failure(self, service, repository):
        result = service.ingest(
            {
                "messages": [
                    {"id": "a", "from": "1", "text": "one"},
                    {"id": "b", "text": "no conversation"},
                    {"id": "c", "from": "2", "text": "three"},
                ]
            }
        )

        assert result.inserted == 2
        assert result.errors == 1
        assert result.failures[0].kind == "unresolvable_conversation"
        assert {m.primary_id for m in stored(repository)} == {"a", "c"}

    def test_parent_supplies_conversation(self, service, repository):
        service.ingest({"wa_id": "777", "name": "Ana", "messages": [{"text": "hi"}]})
        message = stored(repository)[0]
        assert message.conversation_key == "777"
        assert message.display_name == "Ana"

    def test_duplicate_primary_id(self, service, repository):
        payload = {"messages": [{"id": "abc", "from": "1", "text": "hi"}]}
        service.ingest(payload)
        result = service.ingest(payload)

        assert result.inserted == 0
        assert result.duplicates == 1
        assert result.errors == 0
        assert len(stored(repository)) == 1

    def test_cross_namespace_duplicate(self, service, repository):
        service.ingest({"messages": [{"id": "abc", "from": "1", "text": "hi"}]})
        result = service.ingest({"messages": [{"meta_msg_id": "abc", "from": "1", "text": "again"}]})

        assert result.duplicates == 1
        assert len(stored(repository)) == 1

    def test_transport_id_duplicate(self, service, repository):
        service.ingest({"messages": [{"meta_msg_id": "w1", "from": "1", "text": "hi"}]})
        result = service.ingest({"messages": [{"id": "x", "wamid": "w1", "from": "1", "text": "hi"}]})
        assert result.duplicates == 1

    def test_messages_without_ids_are_always_inserted(self, service, repository):
        payload = {"messages": [{"from": "1", "text": "hi"}]}
        service.ingest(payload)
        service.ingest(payload)
        assert len(stored(repository)) == 2

    def test_duplicate_caught_by_constraint(self, service, repository, monkeypatch):
        service.ingest({"messages": [{"id": "abc", "from": "1", "text": "hi"}]})
        monkeypatch.setattr(ingest_module, "find_existing", lambda repository, draft: None)

        result = service.ingest({"messages": [{"id": "abc", "from": "1", "text": "hi"}]})

        assert result.duplicates == 1
        assert result.errors == 0
        assert len(stored(repository)) == 1

    def test_repository_failure_is_per_entry(self, service, repository, monkeypatch):
        original_insert = repository.insert

        def flaky_insert(record):
            if record["primary_id"] == "bad":
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return original_insert(record)

        monkeypatch.setattr(repository, "insert", flaky_insert)
        result = service.ingest(
            {
                "messages": [
                    {"id": "bad", "from": "1", "text": "x"},
                    {"id": "good", "from": "1", "text": "y"},
                ]
            }
        )

        assert result.inserted == 1
        assert result.errors == 1
        assert result.failures[0].kind == "repository_error"

    def test_outgoing_message(self, service, repository):
        service.ingest({"messages": [{"from": "me", "to": "555", "text": "yo"}]})
        message = stored(repository)[0]
        assert message.direction == "outgoing"
        assert message.conversation_key == "555"

    def test_source_is_recorded(self, repository, settings):
        IngestionService(repository, settings=settings, source="dump.json").ingest(
            {"messages": [{"from": "1", "text": "hi"}]}
        )
        assert stored(repository)[0].raw_payload["source"] == "dump.json"

    def test_media_message(self, service, repository):
        service.ingest(
            {"messages": [{"from": "1", "image": {"link": "https://x/p.jpg", "mime_type": "image/jpeg"}}]}
        )
        message = stored(repository)[0]
        assert message.content_type == "image"
        assert message.media_url == "https://x/p.jpg"
        assert message.content


class TestIngestStatuses:
    """Tests for status batches."""

    def test_status_scenario(self, service, repository):
        service.ingest({"messages": [{"id": "wamid.1", "from": "55511", "text": {"body": "hi"}}]})

        first = service.ingest({"type": "status", "id": "wamid.1", "status": "delivered"})
        message = stored(repository)[0]
        delivered_at = message.delivered_at

        assert first.updated == 1
        assert first.matched == 1
        assert message.status == "delivered"
        assert delivered_at is not None

        second = service.ingest({"type": "status", "id": "wamid.1", "status": "delivered"})
        repository.refresh(message)

        assert second.matched == 1
        assert second.updated == 0
        assert message.delivered_at == delivered_at

    def test_status_event(self, service):
        service.ingest({"messages": [{"id": "m1", "from": "1", "text": "hi"}]})
        result = service.ingest({"statuses": [{"id": "m1", "status": "read"}]})

        assert len(result.events) == 1
        event = result.events[0]
        assert isinstance(event, StatusChanged)
        assert event.new_status is MessageStatus.READ
        assert event.identifier_echo == "m1"

    def test_stale_status_does_not_regress(self, service, repository):
        service.ingest({"messages": [{"id": "m1", "from": "1", "text": "hi"}]})
        service.ingest({"statuses": [{"id": "m1", "status": "read"}]})
        result = service.ingest({"statuses": [{"id": "m1", "status": "sent"}]})

        assert result.updated == 0
        assert stored(repository)[0].status == "read"

    def test_unmatched_status(self, service):
        result = service.ingest({"statuses": [{"id": "ghost", "status": "read"}]})
        assert result.status_updates == 1
        assert result.matched == 0
        assert result.unmatched_status_only

    def test_status_without_identifier(self, service):
        result = service.ingest({"statuses": [{"status": "read"}]})
        assert result.errors == 1
        assert result.failures[0].kind == "no_identifier"

    def test_unknown_status_value(self, service):
        service.ingest({"messages": [{"id": "m1", "from": "1", "text": "hi"}]})
        result = service.ingest({"statuses": [{"id": "m1", "status": "seen"}]})
        assert result.errors == 1
        assert result.failures[0].kind == "invalid_status"

    def test_status_update_defaults_to_delivered(self, service, repository):
        service.ingest({"messages": [{"id": "m1", "from": "1", "text": "hi"}]})
        service.ingest({"statuses": [{"id": "m1"}]})
        assert stored(repository)[0].status == "delivered"


class TestIngestShapes:
    """Tests for payload shapes and failure handling."""

    def test_contacts_are_counted_not_stored(self, service, repository):
        result = service.ingest({"contacts": [{"wa_id": "1"}, {"wa_id": "2"}]})
        assert result.contacts == 2
        assert stored(repository) == []
        assert not result.unmatched_status_only

    def test_array_payload(self, service, repository):
        result = service.ingest(
            [
                {"messages": [{"id": "a", "from": "1", "text": "hi"}]},
                [{"from": "2", "text": "nested"}],
                {"statuses": [{"id": "a", "status": "read"}]},
            ]
        )
        assert result.inserted == 2
        assert result.updated == 1

    def test_unrecognized_array_element_is_counted(self, service, repository):
        result = service.ingest([{"from": "1", "text": "ok"}, {"foo": "bar"}, "junk"])
        assert result.inserted == 1
        assert result.errors == 2

    def test_unrecognized_object_raises(self, service):
        with pytest.raises(UnrecognizedPayload):
            service.ingest({"foo": "bar"})

    def test_empty_array_raises(self, service):
        with pytest.raises(UnrecognizedPayload):
            service.ingest([])

    def test_non_object_message_entry(self, service):
        result = service.ingest({"messages": ["just a string", {"from": "1", "text": "hi"}]})
        assert result.inserted == 1
        assert result.errors == 1


class TestBatchResult:
    """Tests for BatchResult bookkeeping."""

    def test_merge(self):
        a = BatchResult(inserted=1, duplicates=1)
        b = BatchResult(inserted=2, errors=1)
        a.merge(b)
        assert (a.inserted, a.duplicates, a.errors) == (3, 1, 1)

    def test_to_dict_excludes_events(self):
        result = BatchResult()
        result.record_failure("no_identifier", "missing")
        data = result.to_dict()
        assert "events" not in data
        assert data["failures"] == [{"kind": "no_identifier", "detail": "missing"}]
        assert data["errors"] == 1


class TestDuplicateConstraint:
    """Tests for the store-level uniqueness guarantee."""

    def test_insert_raises_duplicate_identifier(self, repository):
        record = {"conversation_key": "1", "primary_id": "abc", "content": "x",
                  "timestamp": datetime(2025, 1, 1, tzinfo=timezone.utc)}
        repository.insert(dict(record))
        with pytest.raises(DuplicateIdentifier):
            repository.insert(dict(record))

    def test_other_constraint_failures_are_not_duplicates(self, repository):
        record = {"conversation_key": "1", "primary_id": "abc", "content": None,
                  "timestamp": datetime(2025, 1, 1, tzinfo=timezone.utc)}
        with pytest.raises(IntegrityError):
            repository.insert(record)
        assert stored(repository) == []

    def test_missing_content_is_a_per_entry_error(self, service, repository, monkeypatch):
        original_insert = repository.insert
        monkeypatch.setattr(repository, "insert", lambda record: original_insert({**record, "content": None}))

        result = service.ingest({"messages": [{"id": "abc", "from": "1", "text": "hi"}]})

        assert result.duplicates == 0
        assert result.errors == 1
        assert result.failures[0].kind == "repository_error"


class TestSendLocalMessage:
    """Tests for locally composed messages."""

    def test_send(self, service, repository):
        message, events = service.send_local_message("555", "  hello  ")

        assert message.content == "hello"
        assert message.direction == "outgoing"
        assert message.status == "sent"
        assert message.primary_id.startswith("msg_")
        assert [event.name for event in events] == ["message:new", "message:status_update"]
        assert events[0].to_data()["status"] == "pending"

    def test_blank_content(self, service):
        with pytest.raises(InvalidContent):
            service.send_local_message("555", "   ")

    def test_unknown_content_type(self, service):
        with pytest.raises(InvalidContent):
            service.send_local_message("555", "hi", content_type="hologram")

    def test_local_ids_are_unique(self):
        assert generate_local_id() != generate_local_id()
