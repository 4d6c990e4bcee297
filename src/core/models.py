"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types (Telethon messages, SQLite rows).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional


class ProcessingState(str, Enum):
    """Lifecycle of a media message."""

    INITIALIZED = "initialized"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    EDITED = "edited"


class ApprovalStatus(str, Enum):
    """Lifecycle of an approval queue item."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_MATCHED = "auto_matched"

    @property
    def is_terminal(self) -> bool:
        return self is not ApprovalStatus.PENDING


ENTITY_MEDIA_MESSAGE = "media_message"
ENTITY_TEXT_MESSAGE = "text_message"

EVENT_SUCCESS = "success"
EVENT_FAILURE = "failure"

# Field order matters: it is the order rules run in and the order
# identified_fields are reported in.
CAPTION_FIELDS = (
    "product_name",
    "product_code",
    "vendor_uid",
    "purchase_date",
    "product_quantity",
    "notes",
    "purchase_order_uid",
    "product_sku",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _present(value: Any) -> bool:
    return value is not None and value != ""


@dataclass(frozen=True)
class CaptionData:
    """Structured fields extracted from a caption. Every field is optional."""

    product_name: Optional[str] = None
    product_code: Optional[str] = None
    vendor_uid: Optional[str] = None
    purchase_date: Optional[str] = None
    product_quantity: Optional[float] = None
    notes: Optional[str] = None
    purchase_order_uid: Optional[str] = None
    product_sku: Optional[str] = None

    def present_fields(self) -> list[str]:
        """Names of the fields holding a non-empty value."""

        return [name for name in CAPTION_FIELDS if _present(getattr(self, name))]

    def is_empty(self) -> bool:
        return not self.present_fields()

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the persisted field names, omitting empty fields."""

        return {name: getattr(self, name) for name in self.present_fields()}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["CaptionData"]:
        if data is None:
            return None
        values = {name: data.get(name) for name in CAPTION_FIELDS if _present(data.get(name))}
        if "product_quantity" in values:
            values["product_quantity"] = float(values["product_quantity"])
        return cls(**values)


@dataclass(frozen=True)
class AnalyzedContent(CaptionData):
    """CaptionData enriched with parse metadata."""

    raw_text: str = ""
    parse_version: str = ""
    parsed_at: str = ""
    confidence_score: float = 0.0
    identified_fields: tuple[str, ...] = ()

    def caption_data(self) -> CaptionData:
        return CaptionData(**{name: getattr(self, name) for name in CAPTION_FIELDS})

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "raw_text": self.raw_text,
                "parse_version": self.parse_version,
                "parsed_at": self.parsed_at,
                "confidence_score": self.confidence_score,
                "identified_fields": list(self.identified_fields),
            }
        )
        return payload

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["AnalyzedContent"]:
        if data is None:
            return None
        caption = CaptionData.from_dict(data)
        return cls(
            **{name: getattr(caption, name) for name in CAPTION_FIELDS},
            raw_text=data.get("raw_text") or "",
            parse_version=data.get("parse_version") or "",
            parsed_at=data.get("parsed_at") or "",
            confidence_score=float(data.get("confidence_score") or 0.0),
            identified_fields=tuple(data.get("identified_fields") or ()),
        )


@dataclass(frozen=True)
class MediaMessage:
    """An inbound media message and its processing lifecycle."""

    id: str
    chat_id: int
    telegram_message_id: int
    media_type: Optional[str] = None
    mime_type: Optional[str] = None
    file_unique_id: Optional[str] = None
    public_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[int] = None
    file_size: Optional[int] = None
    chat_title: Optional[str] = None
    message_date: Optional[datetime] = None
    caption: Optional[str] = None
    caption_data: Optional[CaptionData] = None
    analyzed_content: Optional[AnalyzedContent] = None
    old_analyzed_content: Optional[AnalyzedContent] = None
    processing_state: ProcessingState = ProcessingState.INITIALIZED
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    processing_correlation_id: Optional[str] = None
    processing_error: Optional[str] = None
    media_group_id: Optional[str] = None
    is_edited: bool = False
    edit_date: Optional[datetime] = None
    glide_row_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def parsed_caption(self) -> Optional[CaptionData]:
        """Return the parsed caption, preferring caption_data."""

        return self.caption_data or self.analyzed_content

    def details(self) -> dict[str, Any]:
        """Denormalized view used for queue display."""

        return {
            "caption": self.caption,
            "public_url": self.public_url,
            "mime_type": self.mime_type,
            "media_type": self.media_type,
            "message_date": self.message_date.isoformat() if self.message_date else None,
            "chat_id": self.chat_id,
            "chat_title": self.chat_title,
        }


@dataclass(frozen=True)
class Account:
    """Vendor/customer account row from the external catalog."""

    glide_row_id: str
    account_name: str


@dataclass(frozen=True)
class Product:
    """Catalog product row. Read-only from the matcher's perspective."""

    id: str
    glide_row_id: str
    rowid_accounts: Optional[str] = None
    vendor_product_name: Optional[str] = None
    new_product_name: Optional[str] = None
    display_name: Optional[str] = None
    product_purchase_date: Optional[str] = None
    rowid_purchase_orders: Optional[str] = None
    product_code: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    created_at: Optional[datetime] = None

    def name_fields(self) -> list[str]:
        return [
            value
            for value in (self.vendor_product_name, self.new_product_name, self.display_name)
            if value
        ]


@dataclass(frozen=True)
class MatchedProduct:
    """A product scored against caption attributes. Never persisted."""

    product: Product
    match_score: int
    match_reason: str

    @property
    def glide_row_id(self) -> str:
        return self.product.glide_row_id

    @property
    def reasons(self) -> list[str]:
        return [part for part in self.match_reason.split(", ") if part]


@dataclass(frozen=True)
class NewProduct:
    """Operator-supplied data for creating a product from a queue item."""

    product_name: Optional[str] = None
    vendor_id: Optional[str] = None
    purchase_date: Optional[str] = None
    purchase_order_id: Optional[str] = None
    product_code: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None


@dataclass(frozen=True)
class ProductFilter:
    """Immutable candidate filter passed to the catalog query.

    vendor_account_ids=None means "no vendor restriction"; an empty tuple
    means "no vendor can match".
    """

    vendor_account_ids: Optional[tuple[str, ...]] = None
    purchase_date_from: Optional[date] = None
    purchase_date_to: Optional[date] = None


@dataclass(frozen=True)
class MessageFilter:
    """Listing filter for media messages."""

    chat_id: Optional[int] = None
    media_type: Optional[str] = None
    with_caption: Optional[bool] = None
    include_processing: bool = False
    media_group_id: Optional[str] = None


@dataclass(frozen=True)
class ApprovalQueueItem:
    """One message/product matching decision."""

    id: str
    message_id: str
    status: ApprovalStatus = ApprovalStatus.PENDING
    suggested_product_name: Optional[str] = None
    suggested_vendor_uid: Optional[str] = None
    suggested_purchase_date: Optional[str] = None
    suggested_purchase_order_uid: Optional[str] = None
    best_match_product_id: Optional[str] = None
    best_match_score: Optional[int] = None
    best_match_reasons: tuple[str, ...] = ()
    linked_product_id: Optional[str] = None
    media_group_id: Optional[str] = None
    message_details: dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


@dataclass(frozen=True)
class QueueFilter:
    """Listing filter for the approval queue."""

    status: ApprovalStatus = ApprovalStatus.PENDING
    search: Optional[str] = None
    limit: int = 20
    offset: int = 0
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    vendor_id: Optional[str] = None


@dataclass(frozen=True)
class QueuePage:
    """One page of queue items plus the unpaginated count."""

    items: list[ApprovalQueueItem]
    total_count: int
    limit: int
    offset: int
    status: ApprovalStatus

    @property
    def returned_count(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class ItemOutcome:
    queue_id: str
    ok: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class BatchResult:
    """Aggregate outcome of a batch queue operation."""

    outcomes: list[ItemOutcome]

    @property
    def success(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)


@dataclass(frozen=True)
class AuditEvent:
    """Append-only processing lifecycle event."""

    event_type: str
    entity_type: str
    entity_id: str
    correlation_id: str
    details: dict[str, Any] = field(default_factory=dict)
    status: str = EVENT_SUCCESS
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
