"""Core media pipeline.

The pipeline enforces a strict order for every inbound media message:
1) Fast-exit for untracked sources or messages without media
2) Message-level idempotency (chat_id + Telegram message id)
3) Caption processing
4) Optional product matching
5) Approval queue item creation or refresh
6) Operator notification
"""

from __future__ import annotations

import logging
from typing import Optional

from core.approval_queue import ApprovalQueue
from core.config import MatchingConfig
from core.errors import MessageNotFoundError, ProcessingConflictError
from core.matcher import ProductMatcher
from core.models import ApprovalQueueItem, MatchedProduct, MediaMessage
from core.ports import MessageStorePort, NotifierPort
from core.processor import MessageProcessor

LOGGER = logging.getLogger(__name__)


class MediaPipeline:
    """Orchestrates processing, matching, queueing and notifications."""

    def __init__(
        self,
        messages: MessageStorePort,
        processor: MessageProcessor,
        matcher: ProductMatcher,
        queue: ApprovalQueue,
        notifier: Optional[NotifierPort],
        allowed_sources: set[str],
        matching_config: Optional[MatchingConfig] = None,
    ) -> None:
        self._messages = messages
        self._processor = processor
        self._matcher = matcher
        self._queue = queue
        self._notifier = notifier
        self._allowed_sources = allowed_sources
        self._matching = matching_config or MatchingConfig()

    def _accepts(self, message: MediaMessage, source_key: str) -> bool:
        if source_key not in self._allowed_sources:
            return False
        # Plain text messages are not part of the product workflow.
        return bool(message.media_type)

    async def handle(self, message: MediaMessage, source_key: str) -> Optional[ApprovalQueueItem]:
        """Process one new inbound message. Returns the queue item, if any."""

        if not self._accepts(message, source_key):
            return None

        stored, created = self._messages.insert_message(message)
        if not created:
            LOGGER.debug("Skipping known message %s/%s", message.chat_id, message.telegram_message_id)
            return None

        return await self._run(stored)

    async def handle_edit(self, message: MediaMessage, source_key: str) -> Optional[ApprovalQueueItem]:
        """Record a caption edit and reprocess the message."""

        if not self._accepts(message, source_key):
            return None

        existing = self._messages.get_message_by_telegram_id(message.chat_id, message.telegram_message_id)
        if existing is None:
            # Edits of messages we never saw are treated as new messages.
            return await self.handle(message, source_key)

        # Reactions and media-only edits arrive as edits too.
        if (existing.caption or "") == (message.caption or ""):
            return None
        edited = self._processor.record_edit(existing.id, message.caption, message.edit_date)
        return await self._run(edited)

    async def _run(self, message: MediaMessage) -> Optional[ApprovalQueueItem]:
        try:
            processed = self._processor.process_media_message(message.id)
        except ProcessingConflictError:
            LOGGER.info("Message %s is already being processed", message.id)
            return None

        matches = self._matcher.find_matches_for_message(processed) if self._matching.match_on_ingest else None
        item = self._queue.enqueue(processed, matches)

        if self._notifier is not None:
            await self._notifier.send(item)
        return item

    def refresh_matches(self, message_id: str) -> tuple[list[MatchedProduct], ApprovalQueueItem]:
        """Run matching on demand and store the best match on the queue item."""

        message = self._messages.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(f"Media message not found: {message_id}")
        matches = self._matcher.find_matches_for_message(message)
        return matches, self._queue.enqueue(message, matches)

    def group_messages(self, message_id: str) -> list[MediaMessage]:
        """Return the other messages posted in the same media group (album)."""

        message = self._messages.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(f"Media message not found: {message_id}")
        if not message.media_group_id:
            return []
        return [
            sibling
            for sibling in self._messages.list_group_messages(message.media_group_id)
            if sibling.id != message.id
        ]
