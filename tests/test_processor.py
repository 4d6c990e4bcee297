from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from core.audit import AuditLog
from core.errors import MessageNotFoundError, ProcessingConflictError
from core.models import AuditEvent, MediaMessage, ProcessingState
from core.processor import EVENT_COMPLETED, EVENT_FAILED, EVENT_STARTED, MessageProcessor

NOW = datetime(2024, 1, 20, 12, 0, tzinfo=timezone.utc)


class FakeMessages:
    def __init__(self, *messages: MediaMessage) -> None:
        self.rows = {message.id: message for message in messages}
        self.fail_on_update: Optional[Exception] = None

    def get_message(self, message_id: str) -> Optional[MediaMessage]:
        return self.rows.get(message_id)

    def claim_message(self, message_id: str, correlation_id: str, started_at: datetime) -> bool:
        message = self.rows[message_id]
        if message.processing_state is ProcessingState.PROCESSING:
            return False
        self.rows[message_id] = replace(
            message,
            processing_state=ProcessingState.PROCESSING,
            processing_correlation_id=correlation_id,
            processing_started_at=started_at,
            processing_error=None,
        )
        return True

    def update_message(self, message_id: str, patch: dict[str, Any]) -> MediaMessage:
        # Writes that leave the error state fail; the error write itself works.
        if self.fail_on_update and patch.get("processing_state") is not ProcessingState.ERROR:
            raise self.fail_on_update
        self.rows[message_id] = replace(self.rows[message_id], **patch)
        return self.rows[message_id]


class FakeSink:
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def append_event(self, event: AuditEvent) -> None:
        self.events.append(event)

    def list_events(self, correlation_id: str) -> list[AuditEvent]:
        return [event for event in self.events if event.correlation_id == correlation_id]


def _message(**overrides: Any) -> MediaMessage:
    values = {
        "id": "m1",
        "chat_id": -100123,
        "telegram_message_id": 10,
        "media_type": "photo",
        "caption": "Widget X\nVendor: Acme\nDate: 2024-01-15",
    }
    values.update(overrides)
    return MediaMessage(**values)


def _processor(messages: FakeMessages, sink: FakeSink) -> MessageProcessor:
    return MessageProcessor(messages, AuditLog(sink), clock=lambda: NOW)


def test_caption_is_parsed_and_completed() -> None:
    messages = FakeMessages(_message())
    sink = FakeSink()

    result = _processor(messages, sink).process_media_message("m1")

    assert result.processing_state is ProcessingState.COMPLETED
    assert result.processing_completed_at == NOW
    assert result.caption_data.vendor_uid == "Acme"
    assert result.analyzed_content.purchase_date == "2024-01-15"
    assert [event.event_type for event in sink.events] == [EVENT_STARTED, EVENT_COMPLETED]
    assert sink.events[1].details["fields_identified"] == ["product_name", "vendor_uid", "purchase_date"]
    # Both events belong to the same attempt.
    assert len({event.correlation_id for event in sink.events}) == 1
    assert result.processing_correlation_id == sink.events[0].correlation_id


def test_message_without_caption_completes_without_analysis() -> None:
    messages = FakeMessages(_message(caption=None))
    sink = FakeSink()

    result = _processor(messages, sink).process_media_message("m1")

    assert result.processing_state is ProcessingState.COMPLETED
    assert result.analyzed_content is None
    assert sink.events[-1].event_type == EVENT_COMPLETED
    assert sink.events[-1].details["no_caption"] is True


def test_persistence_failure_moves_message_to_error() -> None:
    messages = FakeMessages(_message())
    messages.fail_on_update = RuntimeError("disk full")
    sink = FakeSink()

    with pytest.raises(RuntimeError, match="disk full"):
        _processor(messages, sink).process_media_message("m1")

    stored = messages.rows["m1"]
    assert stored.processing_state is ProcessingState.ERROR
    assert stored.processing_error == "disk full"
    failed = sink.events[-1]
    assert failed.event_type == EVENT_FAILED
    assert failed.status == "failure"
    assert failed.error_message == "disk full"


def test_unknown_message_raises() -> None:
    with pytest.raises(MessageNotFoundError):
        _processor(FakeMessages(), FakeSink()).process_media_message("missing")


def test_second_claim_is_rejected() -> None:
    messages = FakeMessages(_message(processing_state=ProcessingState.PROCESSING))
    sink = FakeSink()

    with pytest.raises(ProcessingConflictError):
        _processor(messages, sink).process_media_message("m1")
    assert sink.events == []


def test_error_state_can_be_retried() -> None:
    messages = FakeMessages(_message(processing_state=ProcessingState.ERROR, processing_error="old"))

    result = _processor(messages, FakeSink()).process_media_message("m1")

    assert result.processing_state is ProcessingState.COMPLETED
    assert result.processing_error is None


def test_reset_processing_clears_lifecycle_fields() -> None:
    messages = FakeMessages(
        _message(
            processing_state=ProcessingState.ERROR,
            processing_error="boom",
            processing_correlation_id="c1",
            processing_started_at=NOW,
        )
    )

    result = _processor(messages, FakeSink()).reset_processing("m1")

    assert result.processing_state is ProcessingState.INITIALIZED
    assert result.processing_error is None
    assert result.processing_correlation_id is None
    assert result.processing_started_at is None


def test_record_edit_keeps_previous_analysis() -> None:
    messages = FakeMessages(_message())
    processor = _processor(messages, FakeSink())
    processed = processor.process_media_message("m1")

    edited = processor.record_edit("m1", "Widget Y\nVendor: Acme")

    assert edited.processing_state is ProcessingState.EDITED
    assert edited.is_edited is True
    assert edited.edit_date == NOW
    assert edited.old_analyzed_content == processed.analyzed_content

    reprocessed = processor.process_media_message("m1")
    assert reprocessed.caption_data.product_name == "Widget Y"


def test_record_edit_with_same_caption_is_a_no_op() -> None:
    message = _message()
    messages = FakeMessages(message)

    assert _processor(messages, FakeSink()).record_edit("m1", message.caption) is message


def test_reprocessing_without_caption_clears_previous_analysis() -> None:
    messages = FakeMessages(_message())
    processor = _processor(messages, FakeSink())
    processor.process_media_message("m1")

    processor.record_edit("m1", None)
    result = processor.process_media_message("m1")

    assert result.caption_data is None
    assert result.analyzed_content is None
    assert result.old_analyzed_content.vendor_uid == "Acme"
