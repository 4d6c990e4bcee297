"""Product matching (core domain).

Matching is a two step process: build an immutable ProductFilter from the
parsed caption, let the catalog narrow the candidates, then score every
candidate independently. Scores are additive:

- vendor filter applied:            +30
- purchase date exact / <=2 / <=window (4 days by default):  +30 / +20 / +10
- product name substring:           +40
- product code or SKU:              +50
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
import logging
from typing import Optional

from core.config import MatchingConfig
from core.models import CaptionData, MatchedProduct, MediaMessage, Product, ProductFilter
from core.ports import AccountCatalogPort, MessageStorePort, ProductCatalogPort

LOGGER = logging.getLogger(__name__)

SCORE_VENDOR = 30
SCORE_DATE_EXACT = 30
SCORE_DATE_CLOSE = 20
SCORE_DATE_WINDOW = 10
SCORE_NAME = 40
SCORE_IDENTIFIER = 50

CLOSE_DAYS = 2
WINDOW_DAYS = 4


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse the date part of an ISO date or timestamp string."""

    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def with_vendor_accounts(product_filter: ProductFilter, account_ids: list[str]) -> ProductFilter:
    return replace(product_filter, vendor_account_ids=tuple(account_ids))


def with_date_window(product_filter: ProductFilter, center: date, days: int) -> ProductFilter:
    return replace(
        product_filter,
        purchase_date_from=center - timedelta(days=days),
        purchase_date_to=center + timedelta(days=days),
    )


def _score_date(
    caption_date: Optional[date], product: Product, window_days: int
) -> tuple[int, Optional[str]]:
    product_date = parse_iso_date(product.product_purchase_date)
    if caption_date is None or product_date is None:
        return 0, None
    delta = abs((caption_date - product_date).days)
    if delta == 0:
        return SCORE_DATE_EXACT, "Exact purchase date match"
    if delta <= CLOSE_DAYS:
        suffix = "s" if delta > 1 else ""
        return SCORE_DATE_CLOSE, f"Purchase date close ({delta} day{suffix} difference)"
    if delta <= window_days:
        return SCORE_DATE_WINDOW, f"Purchase date within window ({delta} days difference)"
    return 0, None


def score_product(
    caption: CaptionData,
    product: Product,
    vendor_filtered: bool,
    window_days: int = WINDOW_DAYS,
) -> MatchedProduct:
    """Score one candidate. Reasons follow rule order: vendor, date, name, identifier.

    The +10 date tier covers the same window the candidate query uses.
    """

    score = 0
    reasons: list[str] = []

    if vendor_filtered:
        score += SCORE_VENDOR
        reasons.append("Vendor matched")

    date_score, date_reason = _score_date(parse_iso_date(caption.purchase_date), product, window_days)
    if date_reason:
        score += date_score
        reasons.append(date_reason)

    if caption.product_name:
        needle = caption.product_name.lower()
        if any(needle in name.lower() for name in product.name_fields()):
            score += SCORE_NAME
            reasons.append("Product name match")

    identifier = caption.product_code or caption.product_sku
    if identifier:
        linked_vendor = bool(caption.vendor_uid) and caption.vendor_uid == product.rowid_accounts
        in_name = identifier.lower() in (product.vendor_product_name or "").lower()
        if linked_vendor or in_name:
            score += SCORE_IDENTIFIER
            reasons.append("Product identifier match")

    return MatchedProduct(product=product, match_score=score, match_reason=", ".join(reasons))


def rank(matches: list[MatchedProduct]) -> list[MatchedProduct]:
    """Drop zero scores; order by score, ties by catalog row id."""

    kept = [match for match in matches if match.match_score > 0]
    return sorted(kept, key=lambda m: (-m.match_score, m.product.glide_row_id, m.product.id))


class ProductMatcher:
    """Find and rank catalog products for parsed captions."""

    def __init__(
        self,
        products: ProductCatalogPort,
        accounts: AccountCatalogPort,
        messages: MessageStorePort,
        config: Optional[MatchingConfig] = None,
    ) -> None:
        self._products = products
        self._accounts = accounts
        self._messages = messages
        self._config = config or MatchingConfig()

    def build_filter(self, caption: CaptionData) -> tuple[Optional[ProductFilter], bool]:
        """Return (filter, vendor_filtered). A None filter means no candidates."""

        product_filter = ProductFilter()
        vendor_filtered = False

        if caption.vendor_uid:
            account_ids = self._accounts.find_accounts_by_name_substring(caption.vendor_uid)
            if account_ids:
                product_filter = with_vendor_accounts(product_filter, account_ids)
                vendor_filtered = True
            elif self._config.vendor_filter_mode == "strict":
                LOGGER.info("No account matches vendor %r; strict mode returns no candidates", caption.vendor_uid)
                return None, False
            else:
                LOGGER.info("No account matches vendor %r; vendor filter skipped", caption.vendor_uid)

        purchase_date = parse_iso_date(caption.purchase_date)
        if purchase_date is not None:
            product_filter = with_date_window(product_filter, purchase_date, self._config.date_window_days)

        return product_filter, vendor_filtered

    def find_matches(self, caption: Optional[CaptionData]) -> list[MatchedProduct]:
        """Return scored candidates for the caption, best first."""

        if caption is None or (not caption.vendor_uid and not caption.product_name):
            return []

        try:
            product_filter, vendor_filtered = self.build_filter(caption)
            if product_filter is None:
                return []
            candidates = self._products.query_products(product_filter)
        except Exception:
            LOGGER.exception("Error finding product matches")
            return []

        window_days = self._config.date_window_days
        matches = rank([score_product(caption, product, vendor_filtered, window_days) for product in candidates])
        LOGGER.info("Found %s product matches from %s candidates", len(matches), len(candidates))
        return matches

    def find_matches_for_message(self, message: MediaMessage) -> list[MatchedProduct]:
        return self.find_matches(message.parsed_caption())

    def link_message_to_product(self, message_id: str, glide_row_id: str) -> MediaMessage:
        """Manually associate a message with a catalog product."""

        return self._messages.link_message_to_product(message_id, glide_row_id)

    def messages_for_product(self, glide_row_id: str) -> list[MediaMessage]:
        return self._messages.messages_for_product(glide_row_id)
