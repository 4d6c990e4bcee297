"""Ports (interfaces) used by the core workflow.

Ports define the minimal contracts for storage and notification adapters so
that the core can be reused with different backends. The SQLite adapter
implements every storage port in one class, but nothing in the core relies
on that.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from core.models import (
    ApprovalQueueItem,
    ApprovalStatus,
    AuditEvent,
    MediaMessage,
    MessageFilter,
    Product,
    ProductFilter,
    QueueFilter,
    QueuePage,
)


class MessageStorePort(Protocol):
    """Media message persistence."""

    def insert_message(self, message: MediaMessage) -> tuple[MediaMessage, bool]:
        """Insert unless (chat_id, telegram_message_id) exists; return (row, created)."""
        ...

    def get_message(self, message_id: str) -> Optional[MediaMessage]:
        ...

    def get_message_by_telegram_id(self, chat_id: int, telegram_message_id: int) -> Optional[MediaMessage]:
        ...

    def update_message(self, message_id: str, patch: dict[str, Any]) -> MediaMessage:
        ...

    def claim_message(self, message_id: str, correlation_id: str, started_at: datetime) -> bool:
        """Move a message to processing unless it is already processing."""
        ...

    def list_messages(
        self, message_filter: MessageFilter, page: int, page_size: int
    ) -> tuple[list[MediaMessage], int]:
        ...

    def list_group_messages(self, media_group_id: str) -> list[MediaMessage]:
        ...

    def link_message_to_product(self, message_id: str, glide_row_id: Optional[str]) -> MediaMessage:
        ...

    def messages_for_product(self, glide_row_id: str) -> list[MediaMessage]:
        ...


class ProductCatalogPort(Protocol):
    """Product catalog reads and the writes queue resolution needs."""

    def query_products(self, product_filter: ProductFilter) -> list[Product]:
        ...

    def get_product(self, glide_row_id: str) -> Optional[Product]:
        ...

    def create_product(self, data: dict[str, Any]) -> Product:
        ...

    def update_product(self, glide_row_id: str, patch: dict[str, Any]) -> Product:
        ...


class AccountCatalogPort(Protocol):
    """Vendor account lookups."""

    def find_accounts_by_name_substring(self, text: str) -> list[str]:
        """Return glide_row_ids of accounts whose name contains text (case-insensitive)."""
        ...


class ApprovalQueueStorePort(Protocol):
    """Approval queue persistence."""

    def insert_queue_item(self, item: ApprovalQueueItem) -> ApprovalQueueItem:
        ...

    def get_queue_item(self, queue_id: str) -> Optional[ApprovalQueueItem]:
        ...

    def get_queue_item_for_message(self, message_id: str) -> Optional[ApprovalQueueItem]:
        ...

    def list_queue_items(self, queue_filter: QueueFilter) -> QueuePage:
        ...

    def update_queue_item(self, queue_id: str, patch: dict[str, Any]) -> ApprovalQueueItem:
        ...

    def transition_queue_item(
        self, queue_id: str, expected_status: ApprovalStatus, patch: dict[str, Any]
    ) -> bool:
        """Apply patch only if the item still has expected_status."""
        ...


class AuditSinkPort(Protocol):
    """Append-only audit event storage."""

    def append_event(self, event: AuditEvent) -> None:
        ...

    def list_events(self, correlation_id: str) -> list[AuditEvent]:
        ...


class NotifierPort(Protocol):
    """Operator notifications about queue items."""

    async def send(self, item: ApprovalQueueItem) -> None:
        ...
