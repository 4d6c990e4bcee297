"""Media message processing state machine.

This module is integration-agnostic. It only relies on ports for storage and
auditing, enabling future frontends or adapters without changes here.

States: initialized -> processing -> completed | error. ``reset_processing``
returns a message to initialized, ``record_edit`` marks a caption change as
edited so the message can be processed again.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from core.audit import AuditLog, new_correlation_id
from core.caption_parser import CaptionParser
from core.errors import MessageNotFoundError, ProcessingConflictError
from core.models import MediaMessage, ProcessingState, utcnow
from core.ports import MessageStorePort

LOGGER = logging.getLogger(__name__)

EVENT_STARTED = "media_message_processing_started"
EVENT_COMPLETED = "media_message_processing_completed"
EVENT_FAILED = "media_message_processing_failed"


class MessageProcessor:
    """Drives media messages through their processing states."""

    def __init__(
        self,
        messages: MessageStorePort,
        audit: AuditLog,
        parser: Optional[CaptionParser] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._messages = messages
        self._audit = audit
        self._parser = parser or CaptionParser()
        self._clock = clock

    def _get(self, message_id: str) -> MediaMessage:
        message = self._messages.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(f"Media message not found: {message_id}")
        return message

    def process_media_message(self, message_id: str) -> MediaMessage:
        """Parse the caption of one message and persist the result.

        Raises ProcessingConflictError when another attempt holds the
        message. Any failure after the claim leaves the message in the error
        state and is re-raised.
        """

        message = self._get(message_id)
        correlation_id = new_correlation_id()

        # The claim is a compare-and-set: two racing attempts cannot both
        # move the message into processing.
        if not self._messages.claim_message(message.id, correlation_id, self._clock()):
            raise ProcessingConflictError(f"Media message {message.id} is already processing")

        self._audit.event(
            EVENT_STARTED,
            message.id,
            correlation_id,
            {"media_type": message.media_type},
        )

        try:
            if message.caption and message.caption.strip():
                result = self._parser.analyze(message.caption)
                if self._parser.last_error:
                    LOGGER.warning(
                        "Caption for %s parsed with errors: %s", message.id, self._parser.last_error
                    )
                processed = self._messages.update_message(
                    message.id,
                    {
                        "caption_data": result.caption_data(),
                        "analyzed_content": result,
                        "processing_state": ProcessingState.COMPLETED,
                        "processing_completed_at": self._clock(),
                    },
                )
                details = {
                    "media_type": message.media_type,
                    "fields_identified": list(result.identified_fields),
                    "confidence_score": result.confidence_score,
                }
            else:
                processed = self._messages.update_message(
                    message.id,
                    {
                        # A caption removed by an edit must not leave its analysis behind.
                        "caption_data": None,
                        "analyzed_content": None,
                        "processing_state": ProcessingState.COMPLETED,
                        "processing_completed_at": self._clock(),
                    },
                )
                details = {"media_type": message.media_type, "no_caption": True}
        except Exception as exc:
            self._fail(message, correlation_id, exc)
            raise

        self._audit.event(EVENT_COMPLETED, message.id, correlation_id, details)
        LOGGER.info("Processed media message %s (%s)", message.id, correlation_id)
        return processed

    def _fail(self, message: MediaMessage, correlation_id: str, exc: Exception) -> None:
        error_message = str(exc) or exc.__class__.__name__
        try:
            self._messages.update_message(
                message.id,
                {
                    "processing_state": ProcessingState.ERROR,
                    "processing_error": error_message,
                },
            )
        except Exception:
            # The original error is what the caller needs to see.
            LOGGER.exception("Failed to persist error state for %s", message.id)
        self._audit.event(
            EVENT_FAILED,
            message.id,
            correlation_id,
            {"media_type": message.media_type},
            error=exc,
        )
        LOGGER.error("Processing failed for %s: %s", message.id, error_message)

    def reset_processing(self, message_id: str) -> MediaMessage:
        """Return a message to initialized so it can be processed again."""

        self._get(message_id)
        return self._messages.update_message(
            message_id,
            {
                "processing_state": ProcessingState.INITIALIZED,
                "processing_started_at": None,
                "processing_completed_at": None,
                "processing_correlation_id": None,
                "processing_error": None,
            },
        )

    def record_edit(
        self, message_id: str, caption: Optional[str], edit_date: Optional[datetime] = None
    ) -> MediaMessage:
        """Store an edited caption and keep the previous analysis."""

        message = self._get(message_id)
        if (message.caption or "") == (caption or ""):
            return message
        return self._messages.update_message(
            message_id,
            {
                "caption": caption,
                "old_analyzed_content": message.analyzed_content,
                "is_edited": True,
                "edit_date": edit_date or self._clock(),
                "processing_state": ProcessingState.EDITED,
            },
        )
