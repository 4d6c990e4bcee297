"""Approval queue workflow.

Each media message gets at most one queue item. Items start pending and end
in exactly one terminal status: approved, rejected or auto_matched. Status
changes are compare-and-set writes against ``pending``, so when two operators
resolve the same item the first one wins and the second gets a
QueueConflictError.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from core.audit import AuditLog, audited
from core.config import QueueConfig
from core.errors import QueueConflictError, QueueItemNotFoundError, QueueStateError
from core.models import (
    ApprovalQueueItem,
    ApprovalStatus,
    BatchResult,
    ItemOutcome,
    MatchedProduct,
    MediaMessage,
    NewProduct,
    Product,
    QueueFilter,
    QueuePage,
    utcnow,
)
from core.ports import (
    AccountCatalogPort,
    ApprovalQueueStorePort,
    MessageStorePort,
    ProductCatalogPort,
)

LOGGER = logging.getLogger(__name__)


class ApprovalQueue:
    """Create, list and resolve approval queue items."""

    def __init__(
        self,
        queue: ApprovalQueueStorePort,
        messages: MessageStorePort,
        products: ProductCatalogPort,
        accounts: AccountCatalogPort,
        audit: AuditLog,
        config: Optional[QueueConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._queue = queue
        self._messages = messages
        self._products = products
        self._accounts = accounts
        self._audit = audit
        self._config = config or QueueConfig()
        self._clock = clock

    # -- audit hooks -----------------------------------------------------

    def _audit_subject(self, queue_id: str, result: Any) -> tuple[str, dict[str, Any]]:
        item = result if isinstance(result, ApprovalQueueItem) else self._queue.get_queue_item(queue_id)
        if item is None:
            return queue_id, {"queue_id": queue_id}
        return item.message_id, {
            "queue_id": item.id,
            "status": item.status.value,
            "linked_product_id": item.linked_product_id,
        }

    # -- creation --------------------------------------------------------

    def _best_match_fields(self, matches: Optional[list[MatchedProduct]]) -> dict[str, Any]:
        if not matches:
            return {}
        best = matches[0]
        if best.match_score < self._config.best_match_min_score:
            return {}
        return {
            "best_match_product_id": best.glide_row_id,
            "best_match_score": best.match_score,
            "best_match_reasons": tuple(best.reasons),
        }

    def _is_auto_match(self, score: Optional[int]) -> bool:
        threshold = self._config.auto_match_min_score
        return threshold is not None and score is not None and score >= threshold

    def enqueue(
        self, message: MediaMessage, matches: Optional[list[MatchedProduct]] = None
    ) -> ApprovalQueueItem:
        """Create or refresh the queue item for a processed message.

        Pending items are refreshed with the latest suggestions; resolved
        items are returned untouched. When matches is None an existing best
        match is kept.
        """

        caption = message.parsed_caption()
        suggestions = {
            "suggested_product_name": caption.product_name if caption else None,
            "suggested_vendor_uid": caption.vendor_uid if caption else None,
            "suggested_purchase_date": caption.purchase_date if caption else None,
            "suggested_purchase_order_uid": caption.purchase_order_uid if caption else None,
            "message_details": message.details(),
            "media_group_id": message.media_group_id,
        }
        best = self._best_match_fields(matches)

        existing = self._queue.get_queue_item_for_message(message.id)
        if existing is not None:
            if existing.status.is_terminal:
                return existing
            patch = dict(suggestions)
            if matches is not None:
                patch.update(
                    best
                    or {"best_match_product_id": None, "best_match_score": None, "best_match_reasons": ()}
                )
            item = self._queue.update_queue_item(existing.id, patch)
            LOGGER.info("Refreshed queue item %s for message %s", item.id, message.id)
        else:
            item = self._queue.insert_queue_item(
                ApprovalQueueItem(
                    id=str(uuid.uuid4()),
                    message_id=message.id,
                    created_at=self._clock(),
                    **suggestions,
                    **best,
                )
            )
            LOGGER.info("Queued message %s as %s", message.id, item.id)

        if item.best_match_product_id and self._is_auto_match(item.best_match_score):
            return self._auto_match(item.id)
        return item

    @audited("approval_queue_item_auto_matched")
    def _auto_match(self, queue_id: str) -> ApprovalQueueItem:
        item = self._require_pending(queue_id)
        return self._resolve(
            item,
            ApprovalStatus.AUTO_MATCHED,
            {"linked_product_id": item.best_match_product_id},
            link_product_id=item.best_match_product_id,
        )

    # -- listing ---------------------------------------------------------

    def list_items(self, queue_filter: Optional[QueueFilter] = None) -> QueuePage:
        """Return one page of queue items; pending by default."""

        queue_filter = queue_filter or QueueFilter(limit=self._config.page_size)
        if queue_filter.limit <= 0:
            raise ValueError("limit must be positive")
        if queue_filter.offset < 0:
            raise ValueError("offset must be >= 0")
        return self._queue.list_queue_items(queue_filter)

    def get_item(self, queue_id: str) -> ApprovalQueueItem:
        item = self._queue.get_queue_item(queue_id)
        if item is None:
            raise QueueItemNotFoundError(f"Queue item not found: {queue_id}")
        return item

    # -- resolution ------------------------------------------------------

    def _require_pending(self, queue_id: str) -> ApprovalQueueItem:
        item = self.get_item(queue_id)
        if item.status.is_terminal:
            raise QueueStateError(f"Queue item {queue_id} is already {item.status.value}")
        return item

    def _resolve(
        self,
        item: ApprovalQueueItem,
        status: ApprovalStatus,
        patch: dict[str, Any],
        link_product_id: Optional[str] = None,
    ) -> ApprovalQueueItem:
        """Claim the item for status, then link the message if needed.

        Claim and link are separate writes. If the link fails, the claim is
        rolled back to pending before the error propagates.
        """

        claimed = self._queue.transition_queue_item(
            item.id,
            ApprovalStatus.PENDING,
            {**patch, "status": status, "processed_at": self._clock()},
        )
        if not claimed:
            raise QueueConflictError(f"Queue item {item.id} was resolved concurrently")

        if link_product_id is not None:
            try:
                self._messages.link_message_to_product(item.message_id, link_product_id)
            except Exception:
                self._queue.transition_queue_item(
                    item.id,
                    status,
                    {"status": ApprovalStatus.PENDING, "processed_at": None, "linked_product_id": None},
                )
                raise

        LOGGER.info("Queue item %s -> %s", item.id, status.value)
        return self.get_item(item.id)

    @audited("approval_queue_item_approved")
    def approve(self, queue_id: str, product_id: str) -> ApprovalQueueItem:
        """Link the item's message to product_id and mark it approved."""

        if not product_id:
            raise ValueError("product_id is required")
        item = self._require_pending(queue_id)
        return self._resolve(
            item,
            ApprovalStatus.APPROVED,
            {"linked_product_id": product_id},
            link_product_id=product_id,
        )

    @audited("approval_queue_item_rejected")
    def reject(self, queue_id: str, reason: Optional[str] = None) -> ApprovalQueueItem:
        """Mark the item rejected; the reason is kept in notes."""

        item = self._require_pending(queue_id)
        return self._resolve(item, ApprovalStatus.REJECTED, {"notes": reason or None})

    def _batch(self, queue_ids: Iterable[str], action: Callable[[str], Any]) -> BatchResult:
        ids = list(dict.fromkeys(queue_ids))
        if not ids:
            raise ValueError("No items selected")

        outcomes: list[ItemOutcome] = []
        for queue_id in ids:
            try:
                action(queue_id)
            except Exception as exc:
                LOGGER.warning("Batch operation failed for queue item %s: %s", queue_id, exc)
                outcomes.append(ItemOutcome(queue_id=queue_id, ok=False, error=str(exc)))
            else:
                outcomes.append(ItemOutcome(queue_id=queue_id, ok=True))

        result = BatchResult(outcomes=outcomes)
        LOGGER.info("Batch finished: success=%s failed=%s", result.success, result.failed)
        return result

    def batch_approve(self, queue_ids: Iterable[str], product_id: str) -> BatchResult:
        """Approve every item against the same product (e.g. one multi-photo post)."""

        if not product_id:
            raise ValueError("product_id is required")
        return self._batch(queue_ids, lambda queue_id: self.approve(queue_id, product_id))

    def batch_reject(self, queue_ids: Iterable[str], reason: Optional[str] = None) -> BatchResult:
        return self._batch(queue_ids, lambda queue_id: self.reject(queue_id, reason))

    def _resolve_vendor(self, suggested_vendor: Optional[str]) -> Optional[str]:
        if not suggested_vendor:
            return None
        account_ids = self._accounts.find_accounts_by_name_substring(suggested_vendor)
        return account_ids[0] if len(account_ids) == 1 else None

    def seed_new_product(self, item: ApprovalQueueItem, product_data: Optional[NewProduct] = None) -> NewProduct:
        """Merge operator data over the item's suggestions."""

        supplied = {key: value for key, value in asdict(product_data or NewProduct()).items() if value not in (None, "")}
        seeded = {
            "product_name": item.suggested_product_name,
            "vendor_id": self._resolve_vendor(item.suggested_vendor_uid),
            "purchase_date": item.suggested_purchase_date,
            "purchase_order_id": item.suggested_purchase_order_uid,
        }
        seeded.update(supplied)
        return NewProduct(**seeded)

    @audited("product_created_from_queue")
    def create_product_from_queue(
        self, queue_id: str, product_data: Optional[NewProduct] = None
    ) -> ApprovalQueueItem:
        """Create a catalog product for the item and approve the item against it."""

        item = self._require_pending(queue_id)
        data = self.seed_new_product(item, product_data)
        if not data.product_name:
            raise ValueError("product_name is required to create a product")

        product: Product = self._products.create_product(
            {
                "vendor_product_name": data.product_name,
                "new_product_name": data.product_name,
                "display_name": data.product_name,
                "rowid_accounts": data.vendor_id,
                "product_purchase_date": data.purchase_date,
                "rowid_purchase_orders": data.purchase_order_id,
                "product_code": data.product_code,
                "description": data.description,
                "category": data.category,
                "price": data.price,
            }
        )
        LOGGER.info("Created product %s from queue item %s", product.glide_row_id, item.id)
        return self._resolve(
            item,
            ApprovalStatus.APPROVED,
            {"linked_product_id": product.glide_row_id},
            link_product_id=product.glide_row_id,
        )


class QueueSelection:
    """Client-side selection for batch operations.

    Selecting "all" selects the loaded page only, never the full result set.
    """

    def __init__(self) -> None:
        self._ids: dict[str, None] = {}

    def toggle(self, queue_id: str) -> None:
        if queue_id in self._ids:
            del self._ids[queue_id]
        else:
            self._ids[queue_id] = None

    def select_page(self, page: QueuePage) -> None:
        self._ids = {item.id: None for item in page.items}

    def clear(self) -> None:
        self._ids.clear()

    def __contains__(self, queue_id: object) -> bool:
        return queue_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def ids(self) -> list[str]:
        return list(self._ids)
