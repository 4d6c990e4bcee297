from __future__ import annotations

from typing import Optional

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.approval_queue import ApprovalQueue, QueueSelection
from core.audit import AuditLog
from core.config import QueueConfig
from core.errors import QueueConflictError, QueueItemNotFoundError, QueueStateError
from core.models import (
    Account,
    ApprovalStatus,
    CaptionData,
    MatchedProduct,
    MediaMessage,
    NewProduct,
    Product,
    QueueFilter,
)


class RacingStorage(SQLiteStorage):
    """Lets a second operator resolve an item just before our write lands."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path)
        self.race_with: Optional[ApprovalStatus] = None
        self.fail_link = False

    def transition_queue_item(self, queue_id, expected_status, patch) -> bool:
        if self.race_with is not None:
            status, self.race_with = self.race_with, None
            super().transition_queue_item(queue_id, expected_status, {"status": status})
        return super().transition_queue_item(queue_id, expected_status, patch)

    def link_message_to_product(self, message_id, glide_row_id):
        if self.fail_link:
            raise RuntimeError("messages table locked")
        return super().link_message_to_product(message_id, glide_row_id)


def _storage(tmp_path) -> RacingStorage:
    storage = RacingStorage(str(tmp_path / "queue.db"))
    storage.init_db()
    storage.upsert_account(Account(glide_row_id="acc-1", account_name="Acme Supplies"))
    storage.create_product({"glide_row_id": "p1", "display_name": "Widget", "rowid_accounts": "acc-1"})
    return storage


def _queue(storage: SQLiteStorage, **config) -> ApprovalQueue:
    return ApprovalQueue(storage, storage, storage, storage, AuditLog(storage), QueueConfig(**config))


def _message(storage: SQLiteStorage, number: int = 1, **caption) -> MediaMessage:
    caption = caption or {"product_name": "Widget", "vendor_uid": "Acme", "purchase_date": "2024-01-15"}
    message, _ = storage.insert_message(
        MediaMessage(
            id=f"m{number}",
            chat_id=-100123,
            telegram_message_id=number,
            media_type="photo",
            caption="Widget",
            caption_data=CaptionData(**caption),
        )
    )
    return message


def _match(storage: SQLiteStorage, score: int) -> MatchedProduct:
    product: Product = storage.get_product("p1")
    return MatchedProduct(product=product, match_score=score, match_reason="Vendor matched, Product name match")


def test_enqueue_creates_pending_item_with_suggestions(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)

    item = queue.enqueue(_message(storage))

    assert item.status is ApprovalStatus.PENDING
    assert item.suggested_product_name == "Widget"
    assert item.suggested_vendor_uid == "Acme"
    assert item.suggested_purchase_date == "2024-01-15"
    assert item.message_details["chat_id"] == -100123
    assert item.message_details["media_type"] == "photo"
    assert item.best_match_product_id is None


def test_enqueue_is_idempotent_per_message(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    message = _message(storage)

    first = queue.enqueue(message)
    second = queue.enqueue(message, [_match(storage, 70)])

    assert second.id == first.id
    assert second.best_match_product_id == "p1"
    assert second.best_match_reasons == ("Vendor matched", "Product name match")
    assert queue.list_items().total_count == 1


def test_weak_best_match_is_not_recorded(tmp_path) -> None:
    storage = _storage(tmp_path)

    item = _queue(storage, best_match_min_score=50).enqueue(_message(storage), [_match(storage, 40)])

    assert item.best_match_product_id is None


def test_approve_moves_item_out_of_pending(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    item = queue.enqueue(_message(storage))

    approved = queue.approve(item.id, "p1")

    assert approved.status is ApprovalStatus.APPROVED
    assert approved.linked_product_id == "p1"
    assert approved.processed_at is not None
    assert storage.get_message("m1").glide_row_id == "p1"
    assert queue.list_items(QueueFilter(status=ApprovalStatus.PENDING)).items == []
    assert [i.id for i in queue.list_items(QueueFilter(status=ApprovalStatus.APPROVED)).items] == [item.id]


def test_resolved_items_never_return_to_pending(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    approved = queue.enqueue(_message(storage, 1))
    rejected = queue.enqueue(_message(storage, 2))
    queue.approve(approved.id, "p1")
    queue.reject(rejected.id, "blurry")

    with pytest.raises(QueueStateError):
        queue.reject(approved.id)
    with pytest.raises(QueueStateError):
        queue.approve(rejected.id, "p1")

    # Re-enqueueing a resolved message leaves it untouched.
    assert queue.enqueue(storage.get_message("m1")).status is ApprovalStatus.APPROVED
    assert queue.get_item(rejected.id).notes == "blurry"
    assert queue.list_items().total_count == 0


def test_approve_requires_product(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    item = queue.enqueue(_message(storage))

    with pytest.raises(ValueError):
        queue.approve(item.id, "")


def test_unknown_item_raises(tmp_path) -> None:
    with pytest.raises(QueueItemNotFoundError):
        _queue(_storage(tmp_path)).reject("nope")


def test_concurrent_resolution_first_writer_wins(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    item = queue.enqueue(_message(storage))
    storage.race_with = ApprovalStatus.REJECTED

    with pytest.raises(QueueConflictError):
        queue.approve(item.id, "p1")

    assert queue.get_item(item.id).status is ApprovalStatus.REJECTED
    assert storage.get_message("m1").glide_row_id is None
    events = storage.list_recent_events("m1")
    assert events[-1].event_type == "approval_queue_item_approved_failed"


def test_failed_link_returns_item_to_pending(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    item = queue.enqueue(_message(storage))
    storage.fail_link = True

    with pytest.raises(RuntimeError):
        queue.approve(item.id, "p1")

    restored = queue.get_item(item.id)
    assert restored.status is ApprovalStatus.PENDING
    assert restored.linked_product_id is None
    assert restored.processed_at is None


def test_batch_approve_links_every_item(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    ids = [queue.enqueue(_message(storage, number)).id for number in (1, 2, 3)]

    result = queue.batch_approve(ids, "p1")

    assert (result.success, result.failed) == (3, 0)
    for queue_id in ids:
        item = queue.get_item(queue_id)
        assert item.status is ApprovalStatus.APPROVED
        assert item.linked_product_id == "p1"


def test_batch_reports_partial_failures(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    good = queue.enqueue(_message(storage)).id

    result = queue.batch_reject([good, "missing", good], "dupes")

    assert (result.success, result.failed) == (1, 1)
    assert result.outcomes[1].queue_id == "missing"
    assert "missing" in result.outcomes[1].error


def test_batch_requires_selection(tmp_path) -> None:
    with pytest.raises(ValueError, match="No items selected"):
        _queue(_storage(tmp_path)).batch_reject([])


def test_create_product_from_queue_seeds_from_suggestions(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    item = queue.enqueue(_message(storage))

    approved = queue.create_product_from_queue(item.id, NewProduct(category="tools", price=9.5))

    product = storage.get_product(approved.linked_product_id)
    assert approved.status is ApprovalStatus.APPROVED
    assert product.vendor_product_name == "Widget"
    assert product.display_name == "Widget"
    assert product.rowid_accounts == "acc-1"
    assert product.product_purchase_date == "2024-01-15"
    assert product.category == "tools"
    assert product.price == 9.5
    assert storage.get_message("m1").glide_row_id == product.glide_row_id


def test_create_product_operator_values_win(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    item = queue.enqueue(_message(storage))

    seeded = queue.seed_new_product(item, NewProduct(product_name="Widget Mk2", vendor_id="acc-9"))

    assert seeded.product_name == "Widget Mk2"
    assert seeded.vendor_id == "acc-9"
    assert seeded.purchase_date == "2024-01-15"


def test_create_product_requires_a_name(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    item = queue.enqueue(_message(storage, vendor_uid="Acme"))

    with pytest.raises(ValueError):
        queue.create_product_from_queue(item.id)
    assert queue.get_item(item.id).status is ApprovalStatus.PENDING


def test_strong_match_is_auto_matched(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage, auto_match_min_score=90)

    item = queue.enqueue(_message(storage), [_match(storage, 100)])

    assert item.status is ApprovalStatus.AUTO_MATCHED
    assert item.linked_product_id == "p1"
    assert storage.get_message("m1").glide_row_id == "p1"


def test_list_items_search_and_paging(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    queue.enqueue(_message(storage, 1, product_name="Red Widget"))
    queue.enqueue(_message(storage, 2, product_name="Blue Widget"))
    queue.enqueue(_message(storage, 3, product_name="Gadget"))

    page = queue.list_items(QueueFilter(search="widget", limit=1))

    assert page.total_count == 2
    assert page.returned_count == 1

    with pytest.raises(ValueError):
        queue.list_items(QueueFilter(limit=0))


def test_selection_all_means_loaded_page(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    for number in (1, 2, 3):
        queue.enqueue(_message(storage, number))
    page = queue.list_items(QueueFilter(limit=2))

    selection = QueueSelection()
    selection.select_page(page)

    assert len(selection) == 2
    assert selection.ids == [item.id for item in page.items]
    selection.toggle(page.items[0].id)
    assert page.items[0].id not in selection
    selection.clear()
    assert len(selection) == 0


def test_transitions_are_audited(tmp_path) -> None:
    storage = _storage(tmp_path)
    queue = _queue(storage)
    item = queue.enqueue(_message(storage))

    queue.reject(item.id, "duplicate")

    [event] = storage.list_recent_events("m1")
    assert event.event_type == "approval_queue_item_rejected"
    assert event.details["status"] == "rejected"
