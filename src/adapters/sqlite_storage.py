"""SQLite storage adapter.

Implements every core storage port (messages, catalog, accounts, approval
queue, audit log) using a simple SQLite database.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Optional

from core.errors import MessageNotFoundError, QueueItemNotFoundError
from core.models import (
    Account,
    AnalyzedContent,
    ApprovalQueueItem,
    ApprovalStatus,
    AuditEvent,
    CaptionData,
    MediaMessage,
    MessageFilter,
    ProcessingState,
    Product,
    ProductFilter,
    QueueFilter,
    QueuePage,
    utcnow,
)

MESSAGE_COLUMNS = (
    "id",
    "chat_id",
    "telegram_message_id",
    "media_type",
    "mime_type",
    "file_unique_id",
    "public_url",
    "width",
    "height",
    "duration",
    "file_size",
    "chat_title",
    "message_date",
    "caption",
    "caption_data",
    "analyzed_content",
    "old_analyzed_content",
    "processing_state",
    "processing_started_at",
    "processing_completed_at",
    "processing_correlation_id",
    "processing_error",
    "media_group_id",
    "is_edited",
    "edit_date",
    "glide_row_id",
    "created_at",
    "updated_at",
)

PRODUCT_COLUMNS = (
    "id",
    "glide_row_id",
    "rowid_accounts",
    "vendor_product_name",
    "new_product_name",
    "display_name",
    "product_purchase_date",
    "rowid_purchase_orders",
    "product_code",
    "description",
    "category",
    "price",
    "created_at",
)

QUEUE_COLUMNS = (
    "id",
    "message_id",
    "status",
    "suggested_product_name",
    "suggested_vendor_uid",
    "suggested_purchase_date",
    "suggested_purchase_order_uid",
    "best_match_product_id",
    "best_match_score",
    "best_match_reasons",
    "linked_product_id",
    "media_group_id",
    "message_details",
    "notes",
    "created_at",
    "processed_at",
)

# States shown in message listings unless in-flight messages are requested.
SETTLED_STATES = (
    ProcessingState.COMPLETED.value,
    ProcessingState.ERROR.value,
    ProcessingState.EDITED.value,
)


def _encode(value: Any) -> Any:
    """Convert a Python value into something sqlite3 can bind."""

    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, CaptionData):
        return json.dumps(value.to_dict())
    if is_dataclass(value):
        return json.dumps(asdict(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(list(value) if isinstance(value, tuple) else value)
    return value


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _json(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


def _like(text: str) -> str:
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _set_clause(patch: dict[str, Any], allowed: Iterable[str]) -> tuple[str, list[Any]]:
    allowed = set(allowed)
    unknown = set(patch) - allowed
    if unknown:
        raise ValueError(f"Unknown columns: {', '.join(sorted(unknown))}")
    columns = list(patch)
    return ", ".join(f"{column} = ?" for column in columns), [_encode(patch[c]) for c in columns]


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the core storage ports."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - messages: inbound media messages and their processing state
        - accounts: vendor accounts used to resolve caption vendors
        - products: the product catalog
        - approval_queue: one matching decision per message
        - audit_logs: append-only processing events
        """

        with self._connect() as conn:
            # (chat_id, telegram_message_id) is the natural key of a Telegram
            # message and makes ingest idempotent across restarts.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    chat_id INTEGER NOT NULL,
                    telegram_message_id INTEGER NOT NULL,
                    media_type TEXT,
                    mime_type TEXT,
                    file_unique_id TEXT,
                    public_url TEXT,
                    width INTEGER,
                    height INTEGER,
                    duration INTEGER,
                    file_size INTEGER,
                    chat_title TEXT,
                    message_date TIMESTAMP,
                    caption TEXT,
                    caption_data TEXT,
                    analyzed_content TEXT,
                    old_analyzed_content TEXT,
                    processing_state TEXT NOT NULL DEFAULT 'initialized',
                    processing_started_at TIMESTAMP,
                    processing_completed_at TIMESTAMP,
                    processing_correlation_id TEXT,
                    processing_error TEXT,
                    media_group_id TEXT,
                    is_edited INTEGER NOT NULL DEFAULT 0,
                    edit_date TIMESTAMP,
                    glide_row_id TEXT,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    UNIQUE (chat_id, telegram_message_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    glide_row_id TEXT PRIMARY KEY,
                    account_name TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS products (
                    id TEXT PRIMARY KEY,
                    glide_row_id TEXT NOT NULL UNIQUE,
                    rowid_accounts TEXT,
                    vendor_product_name TEXT,
                    new_product_name TEXT,
                    display_name TEXT,
                    product_purchase_date TEXT,
                    rowid_purchase_orders TEXT,
                    product_code TEXT,
                    description TEXT,
                    category TEXT,
                    price REAL,
                    created_at TIMESTAMP
                )
                """
            )
            # message_id is unique: a message never has two open decisions.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS approval_queue (
                    id TEXT PRIMARY KEY,
                    message_id TEXT NOT NULL UNIQUE,
                    status TEXT NOT NULL DEFAULT 'pending',
                    suggested_product_name TEXT,
                    suggested_vendor_uid TEXT,
                    suggested_purchase_date TEXT,
                    suggested_purchase_order_uid TEXT,
                    best_match_product_id TEXT,
                    best_match_score INTEGER,
                    best_match_reasons TEXT,
                    linked_product_id TEXT,
                    media_group_id TEXT,
                    message_details TEXT,
                    notes TEXT,
                    created_at TIMESTAMP NOT NULL,
                    processed_at TIMESTAMP
                )
                """
            )
            # audit_logs is append-only; readers group rows by correlation_id.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS audit_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    correlation_id TEXT NOT NULL,
                    details TEXT,
                    status TEXT NOT NULL,
                    error_message TEXT,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_group ON messages (media_group_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_product ON messages (glide_row_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_queue_status ON approval_queue (status, created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_logs (correlation_id)")

    # -- messages ----------------------------------------------------------

    @staticmethod
    def _message_from_row(row: sqlite3.Row) -> MediaMessage:
        return MediaMessage(
            id=row["id"],
            chat_id=row["chat_id"],
            telegram_message_id=row["telegram_message_id"],
            media_type=row["media_type"],
            mime_type=row["mime_type"],
            file_unique_id=row["file_unique_id"],
            public_url=row["public_url"],
            width=row["width"],
            height=row["height"],
            duration=row["duration"],
            file_size=row["file_size"],
            chat_title=row["chat_title"],
            message_date=_dt(row["message_date"]),
            caption=row["caption"],
            caption_data=CaptionData.from_dict(_json(row["caption_data"])),
            analyzed_content=AnalyzedContent.from_dict(_json(row["analyzed_content"])),
            old_analyzed_content=AnalyzedContent.from_dict(_json(row["old_analyzed_content"])),
            processing_state=ProcessingState(row["processing_state"]),
            processing_started_at=_dt(row["processing_started_at"]),
            processing_completed_at=_dt(row["processing_completed_at"]),
            processing_correlation_id=row["processing_correlation_id"],
            processing_error=row["processing_error"],
            media_group_id=row["media_group_id"],
            is_edited=bool(row["is_edited"]),
            edit_date=_dt(row["edit_date"]),
            glide_row_id=row["glide_row_id"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def insert_message(self, message: MediaMessage) -> tuple[MediaMessage, bool]:
        """Insert a message unless its Telegram identity is already stored."""

        now = utcnow()
        values = {column: getattr(message, column) for column in MESSAGE_COLUMNS}
        values["id"] = message.id or str(uuid.uuid4())
        values["created_at"] = message.created_at or now
        values["updated_at"] = now
        placeholders = ", ".join("?" for _ in MESSAGE_COLUMNS)
        with self._connect() as conn:
            cur = conn.execute(
                f"INSERT OR IGNORE INTO messages ({', '.join(MESSAGE_COLUMNS)}) VALUES ({placeholders})",
                [_encode(values[column]) for column in MESSAGE_COLUMNS],
            )
            created = cur.rowcount == 1
        stored = self.get_message_by_telegram_id(message.chat_id, message.telegram_message_id)
        if stored is None:
            raise MessageNotFoundError(f"Media message vanished after insert: {values['id']}")
        return stored, created

    def get_message(self, message_id: str) -> Optional[MediaMessage]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        return self._message_from_row(row) if row else None

    def get_message_by_telegram_id(self, chat_id: int, telegram_message_id: int) -> Optional[MediaMessage]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM messages WHERE chat_id = ? AND telegram_message_id = ?",
                (chat_id, telegram_message_id),
            ).fetchone()
        return self._message_from_row(row) if row else None

    def update_message(self, message_id: str, patch: dict[str, Any]) -> MediaMessage:
        """Apply a partial update and return the fresh row."""

        patch = {**patch, "updated_at": utcnow()}
        clause, params = _set_clause(patch, MESSAGE_COLUMNS)
        with self._connect() as conn:
            cur = conn.execute(f"UPDATE messages SET {clause} WHERE id = ?", (*params, message_id))
            if cur.rowcount == 0:
                raise MessageNotFoundError(f"Media message not found: {message_id}")
        return self.get_message(message_id)

    def claim_message(self, message_id: str, correlation_id: str, started_at: datetime) -> bool:
        """Compare-and-set a message into processing."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE messages
                SET processing_state = ?,
                    processing_started_at = ?,
                    processing_correlation_id = ?,
                    processing_error = NULL,
                    updated_at = ?
                WHERE id = ? AND processing_state != ?
                """,
                (
                    ProcessingState.PROCESSING.value,
                    started_at.isoformat(),
                    correlation_id,
                    utcnow().isoformat(),
                    message_id,
                    ProcessingState.PROCESSING.value,
                ),
            )
            return cur.rowcount == 1

    def list_messages(
        self, message_filter: MessageFilter, page: int = 1, page_size: int = 20
    ) -> tuple[list[MediaMessage], int]:
        """Return (page of messages newest first, total count)."""

        clauses: list[str] = []
        params: list[Any] = []
        if message_filter.chat_id is not None:
            clauses.append("chat_id = ?")
            params.append(message_filter.chat_id)
        if message_filter.media_type:
            clauses.append("media_type = ?")
            params.append(message_filter.media_type)
        if message_filter.with_caption is True:
            clauses.append("caption IS NOT NULL")
        elif message_filter.with_caption is False:
            clauses.append("caption IS NULL")
        if message_filter.media_group_id:
            clauses.append("media_group_id = ?")
            params.append(message_filter.media_group_id)
        if not message_filter.include_processing:
            clauses.append(f"processing_state IN ({', '.join('?' for _ in SETTLED_STATES)})")
            params.extend(SETTLED_STATES)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        offset = (max(page, 1) - 1) * page_size
        with self._connect() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM messages {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM messages {where} ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
                (*params, page_size, offset),
            ).fetchall()
        return [self._message_from_row(row) for row in rows], int(total)

    def list_group_messages(self, media_group_id: str) -> list[MediaMessage]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE media_group_id = ? ORDER BY created_at, id",
                (media_group_id,),
            ).fetchall()
        return [self._message_from_row(row) for row in rows]

    def link_message_to_product(self, message_id: str, glide_row_id: Optional[str]) -> MediaMessage:
        return self.update_message(message_id, {"glide_row_id": glide_row_id})

    def messages_for_product(self, glide_row_id: str) -> list[MediaMessage]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE glide_row_id = ? ORDER BY created_at DESC",
                (glide_row_id,),
            ).fetchall()
        return [self._message_from_row(row) for row in rows]

    # -- accounts ----------------------------------------------------------

    def upsert_account(self, account: Account) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO accounts (glide_row_id, account_name) VALUES (?, ?)
                ON CONFLICT(glide_row_id) DO UPDATE SET account_name = excluded.account_name
                """,
                (account.glide_row_id, account.account_name),
            )

    def find_accounts_by_name_substring(self, text: str) -> list[str]:
        """Return account ids whose name contains text, case-insensitively."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT glide_row_id FROM accounts WHERE lower(account_name) LIKE ? ESCAPE '\\' "
                "ORDER BY glide_row_id",
                (_like(text),),
            ).fetchall()
        return [row["glide_row_id"] for row in rows]

    # -- products ----------------------------------------------------------

    @staticmethod
    def _product_from_row(row: sqlite3.Row) -> Product:
        return Product(
            id=row["id"],
            glide_row_id=row["glide_row_id"],
            rowid_accounts=row["rowid_accounts"],
            vendor_product_name=row["vendor_product_name"],
            new_product_name=row["new_product_name"],
            display_name=row["display_name"],
            product_purchase_date=row["product_purchase_date"],
            rowid_purchase_orders=row["rowid_purchase_orders"],
            product_code=row["product_code"],
            description=row["description"],
            category=row["category"],
            price=row["price"],
            created_at=_dt(row["created_at"]),
        )

    def query_products(self, product_filter: ProductFilter) -> list[Product]:
        """Run the candidate query described by an immutable filter."""

        clauses: list[str] = []
        params: list[Any] = []
        if product_filter.vendor_account_ids is not None:
            if not product_filter.vendor_account_ids:
                return []
            placeholders = ", ".join("?" for _ in product_filter.vendor_account_ids)
            clauses.append(f"rowid_accounts IN ({placeholders})")
            params.extend(product_filter.vendor_account_ids)
        # Purchase dates may be stored as dates or timestamps; compare the day.
        if product_filter.purchase_date_from is not None:
            clauses.append("substr(product_purchase_date, 1, 10) >= ?")
            params.append(product_filter.purchase_date_from.isoformat())
        if product_filter.purchase_date_to is not None:
            clauses.append("substr(product_purchase_date, 1, 10) <= ?")
            params.append(product_filter.purchase_date_to.isoformat())

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(f"SELECT * FROM products {where} ORDER BY glide_row_id", params).fetchall()
        return [self._product_from_row(row) for row in rows]

    def get_product(self, glide_row_id: str) -> Optional[Product]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM products WHERE glide_row_id = ?", (glide_row_id,)).fetchone()
        return self._product_from_row(row) if row else None

    def create_product(self, data: dict[str, Any]) -> Product:
        """Insert a product; ids are generated unless supplied."""

        values = {
            "id": str(uuid.uuid4()),
            "glide_row_id": str(uuid.uuid4()),
            "created_at": utcnow(),
            **{key: value for key, value in data.items() if value is not None},
        }
        clause_columns = list(values)
        unknown = set(clause_columns) - set(PRODUCT_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown columns: {', '.join(sorted(unknown))}")
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO products ({', '.join(clause_columns)}) "
                f"VALUES ({', '.join('?' for _ in clause_columns)})",
                [_encode(values[column]) for column in clause_columns],
            )
        return self.get_product(values["glide_row_id"])

    def update_product(self, glide_row_id: str, patch: dict[str, Any]) -> Product:
        clause, params = _set_clause(patch, PRODUCT_COLUMNS)
        with self._connect() as conn:
            cur = conn.execute(f"UPDATE products SET {clause} WHERE glide_row_id = ?", (*params, glide_row_id))
            if cur.rowcount == 0:
                raise ValueError(f"Product not found: {glide_row_id}")
        return self.get_product(glide_row_id)

    def import_catalog(self, catalog: dict[str, Any]) -> tuple[int, int]:
        """Load {"accounts": [...], "products": [...]}; returns counts."""

        accounts = catalog.get("accounts", [])
        products = catalog.get("products", [])
        for entry in accounts:
            self.upsert_account(Account(glide_row_id=entry["glide_row_id"], account_name=entry["account_name"]))
        for entry in products:
            existing = self.get_product(entry["glide_row_id"]) if entry.get("glide_row_id") else None
            if existing is None:
                self.create_product(entry)
            else:
                patch = {key: value for key, value in entry.items() if key not in ("id", "glide_row_id")}
                if patch:
                    self.update_product(existing.glide_row_id, patch)
        return len(accounts), len(products)

    # -- approval queue ----------------------------------------------------

    @staticmethod
    def _queue_item_from_row(row: sqlite3.Row) -> ApprovalQueueItem:
        return ApprovalQueueItem(
            id=row["id"],
            message_id=row["message_id"],
            status=ApprovalStatus(row["status"]),
            suggested_product_name=row["suggested_product_name"],
            suggested_vendor_uid=row["suggested_vendor_uid"],
            suggested_purchase_date=row["suggested_purchase_date"],
            suggested_purchase_order_uid=row["suggested_purchase_order_uid"],
            best_match_product_id=row["best_match_product_id"],
            best_match_score=row["best_match_score"],
            best_match_reasons=tuple(_json(row["best_match_reasons"]) or ()),
            linked_product_id=row["linked_product_id"],
            media_group_id=row["media_group_id"],
            message_details=_json(row["message_details"]) or {},
            notes=row["notes"],
            created_at=_dt(row["created_at"]),
            processed_at=_dt(row["processed_at"]),
        )

    def insert_queue_item(self, item: ApprovalQueueItem) -> ApprovalQueueItem:
        values = {column: getattr(item, column) for column in QUEUE_COLUMNS}
        values["created_at"] = item.created_at or utcnow()
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO approval_queue ({', '.join(QUEUE_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in QUEUE_COLUMNS)})",
                [_encode(values[column]) for column in QUEUE_COLUMNS],
            )
        return self.get_queue_item(item.id)

    def get_queue_item(self, queue_id: str) -> Optional[ApprovalQueueItem]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM approval_queue WHERE id = ?", (queue_id,)).fetchone()
        return self._queue_item_from_row(row) if row else None

    def get_queue_item_for_message(self, message_id: str) -> Optional[ApprovalQueueItem]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM approval_queue WHERE message_id = ?", (message_id,)).fetchone()
        return self._queue_item_from_row(row) if row else None

    def list_queue_items(self, queue_filter: QueueFilter) -> QueuePage:
        """Return one page of items for a status plus the total count."""

        clauses = ["status = ?"]
        params: list[Any] = [_encode(queue_filter.status)]
        if queue_filter.search:
            clauses.append(
                "(lower(coalesce(suggested_product_name, '')) LIKE ? ESCAPE '\\' "
                "OR lower(coalesce(suggested_vendor_uid, '')) LIKE ? ESCAPE '\\')"
            )
            params.extend([_like(queue_filter.search)] * 2)
        if queue_filter.date_from is not None:
            clauses.append("created_at >= ?")
            params.append(_encode(queue_filter.date_from))
        if queue_filter.date_to is not None:
            clauses.append("created_at <= ?")
            params.append(_encode(queue_filter.date_to))
        if queue_filter.vendor_id:
            clauses.append("lower(suggested_vendor_uid) = ?")
            params.append(queue_filter.vendor_id.lower())

        where = " AND ".join(clauses)
        with self._connect() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM approval_queue WHERE {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM approval_queue WHERE {where} ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
                (*params, queue_filter.limit, queue_filter.offset),
            ).fetchall()
        return QueuePage(
            items=[self._queue_item_from_row(row) for row in rows],
            total_count=int(total),
            limit=queue_filter.limit,
            offset=queue_filter.offset,
            status=queue_filter.status,
        )

    def update_queue_item(self, queue_id: str, patch: dict[str, Any]) -> ApprovalQueueItem:
        clause, params = _set_clause(patch, QUEUE_COLUMNS)
        with self._connect() as conn:
            cur = conn.execute(f"UPDATE approval_queue SET {clause} WHERE id = ?", (*params, queue_id))
            if cur.rowcount == 0:
                raise QueueItemNotFoundError(f"Queue item not found: {queue_id}")
        return self.get_queue_item(queue_id)

    def transition_queue_item(
        self, queue_id: str, expected_status: ApprovalStatus, patch: dict[str, Any]
    ) -> bool:
        """Compare-and-set: apply patch only while status == expected_status."""

        clause, params = _set_clause(patch, QUEUE_COLUMNS)
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE approval_queue SET {clause} WHERE id = ? AND status = ?",
                (*params, queue_id, _encode(expected_status)),
            )
            return cur.rowcount == 1

    # -- audit log ---------------------------------------------------------

    def append_event(self, event: AuditEvent) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO audit_logs (
                    event_type,
                    entity_type,
                    entity_id,
                    correlation_id,
                    details,
                    status,
                    error_message,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.event_type,
                    event.entity_type,
                    event.entity_id,
                    event.correlation_id,
                    json.dumps(event.details, default=str),
                    event.status,
                    event.error_message,
                    event.created_at.isoformat(),
                ),
            )

    def list_events(self, correlation_id: str) -> list[AuditEvent]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_logs WHERE correlation_id = ? ORDER BY id",
                (correlation_id,),
            ).fetchall()
        return [
            AuditEvent(
                event_type=row["event_type"],
                entity_type=row["entity_type"],
                entity_id=row["entity_id"],
                correlation_id=row["correlation_id"],
                details=_json(row["details"]) or {},
                status=row["status"],
                error_message=row["error_message"],
                created_at=_dt(row["created_at"]),
            )
            for row in rows
        ]

    def list_recent_events(self, entity_id: str, limit: int = 50) -> list[AuditEvent]:
        """Return the latest events for one entity, newest first."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT correlation_id FROM audit_logs WHERE entity_id = ? ORDER BY id DESC LIMIT ?",
                (entity_id, limit),
            ).fetchall()
        seen: dict[str, None] = {row["correlation_id"]: None for row in rows}
        events: list[AuditEvent] = []
        for correlation_id in seen:
            events.extend(reversed(self.list_events(correlation_id)))
        return events[:limit]
