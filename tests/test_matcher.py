from __future__ import annotations

from datetime import date
from typing import Optional

from core.config import MatchingConfig
from core.matcher import ProductMatcher, parse_iso_date, score_product
from core.models import CaptionData, MediaMessage, Product, ProductFilter


class FakeCatalog:
    def __init__(self, *products: Product) -> None:
        self.products = list(products)
        self.filters: list[ProductFilter] = []
        self.fail = False

    def query_products(self, product_filter: ProductFilter) -> list[Product]:
        if self.fail:
            raise RuntimeError("catalog offline")
        self.filters.append(product_filter)
        found = []
        for product in self.products:
            if product_filter.vendor_account_ids is not None and product.rowid_accounts not in product_filter.vendor_account_ids:
                continue
            purchased = parse_iso_date(product.product_purchase_date)
            if product_filter.purchase_date_from and (purchased is None or purchased < product_filter.purchase_date_from):
                continue
            if product_filter.purchase_date_to and (purchased is None or purchased > product_filter.purchase_date_to):
                continue
            found.append(product)
        return found


class FakeAccounts:
    def __init__(self, accounts: dict[str, str]) -> None:
        self.accounts = accounts

    def find_accounts_by_name_substring(self, text: str) -> list[str]:
        return sorted(key for key, name in self.accounts.items() if text.lower() in name.lower())


class FakeMessages:
    def __init__(self) -> None:
        self.links: dict[str, Optional[str]] = {}

    def link_message_to_product(self, message_id: str, glide_row_id: Optional[str]) -> MediaMessage:
        self.links[message_id] = glide_row_id
        return MediaMessage(id=message_id, chat_id=1, telegram_message_id=1, glide_row_id=glide_row_id)

    def messages_for_product(self, glide_row_id: str) -> list[MediaMessage]:
        return [
            MediaMessage(id=message_id, chat_id=1, telegram_message_id=1, glide_row_id=glide_row_id)
            for message_id, linked in self.links.items()
            if linked == glide_row_id
        ]


def _product(row_id: str, **overrides) -> Product:
    values = {"id": f"id-{row_id}", "glide_row_id": row_id}
    values.update(overrides)
    return Product(**values)


def _matcher(catalog: FakeCatalog, accounts: Optional[dict[str, str]] = None, **config) -> ProductMatcher:
    return ProductMatcher(
        catalog,
        FakeAccounts(accounts or {"acc-1": "Acme Supplies", "acc-2": "Globex"}),
        FakeMessages(),
        MatchingConfig(**config),
    )


CAPTION = CaptionData(product_name="Widget", vendor_uid="Acme", purchase_date="2024-01-15")


def test_no_vendor_and_no_name_returns_nothing() -> None:
    catalog = FakeCatalog(_product("p1", display_name="Widget"))
    assert _matcher(catalog).find_matches(CaptionData(product_code="W-1")) == []
    assert _matcher(catalog).find_matches(None) == []
    assert catalog.filters == []


def test_vendor_date_and_name_score_exactly_100() -> None:
    catalog = FakeCatalog(
        _product("p1", rowid_accounts="acc-1", vendor_product_name="Blue Widget XL", product_purchase_date="2024-01-15")
    )

    [match] = _matcher(catalog).find_matches(CAPTION)

    assert match.match_score == 100
    assert match.match_reason == "Vendor matched, Exact purchase date match, Product name match"


def test_candidate_filter_uses_vendor_accounts_and_date_window() -> None:
    catalog = FakeCatalog()
    _matcher(catalog).find_matches(CAPTION)

    [product_filter] = catalog.filters
    assert product_filter.vendor_account_ids == ("acc-1",)
    assert product_filter.purchase_date_from == date(2024, 1, 11)
    assert product_filter.purchase_date_to == date(2024, 1, 19)


def test_date_proximity_scores() -> None:
    catalog = FakeCatalog(
        _product("close", rowid_accounts="acc-1", product_purchase_date="2024-01-16"),
        _product("window", rowid_accounts="acc-1", product_purchase_date="2024-01-18"),
        _product("outside", rowid_accounts="acc-1", product_purchase_date="2024-02-20"),
    )

    matches = _matcher(catalog).find_matches(CaptionData(vendor_uid="Acme", purchase_date="2024-01-15"))

    assert [(m.glide_row_id, m.match_score) for m in matches] == [("close", 50), ("window", 40)]
    assert "Purchase date close (1 day difference)" in matches[0].reasons
    assert "Purchase date within window (3 days difference)" in matches[1].reasons


def test_zero_scores_are_dropped() -> None:
    catalog = FakeCatalog(_product("p1", display_name="Gadget"), _product("p2", display_name="Widget Pro"))

    matches = _matcher(catalog).find_matches(CaptionData(product_name="widget"))

    assert [m.glide_row_id for m in matches] == ["p2"]
    assert all(m.match_score > 0 for m in matches)


def test_ties_are_broken_by_row_id() -> None:
    catalog = FakeCatalog(
        _product("b", display_name="Widget"),
        _product("a", display_name="Widget"),
        _product("c", display_name="Widget deluxe"),
    )

    matches = _matcher(catalog).find_matches(CaptionData(product_name="Widget"))

    assert [m.glide_row_id for m in matches] == ["a", "b", "c"]


def test_unknown_vendor_lenient_keeps_all_vendors() -> None:
    catalog = FakeCatalog(_product("p1", rowid_accounts="acc-2", display_name="Widget"))
    caption = CaptionData(product_name="Widget", vendor_uid="Initech")

    [match] = _matcher(catalog).find_matches(caption)

    assert catalog.filters[0].vendor_account_ids is None
    assert match.match_score == 40


def test_unknown_vendor_strict_returns_nothing() -> None:
    catalog = FakeCatalog(_product("p1", rowid_accounts="acc-2", display_name="Widget"))
    caption = CaptionData(product_name="Widget", vendor_uid="Initech")

    assert _matcher(catalog, vendor_filter_mode="strict").find_matches(caption) == []
    assert catalog.filters == []


def test_identifier_in_vendor_product_name_scores() -> None:
    product = _product("p1", vendor_product_name="Widget W-77 steel")

    match = score_product(CaptionData(product_code="w-77"), product, vendor_filtered=False)

    assert match.match_score == 50
    assert match.reasons == ["Product identifier match"]


def test_catalog_failure_returns_empty_list() -> None:
    catalog = FakeCatalog()
    catalog.fail = True

    assert _matcher(catalog).find_matches(CAPTION) == []


def test_matches_for_message_use_parsed_caption() -> None:
    catalog = FakeCatalog(_product("p1", display_name="Widget"))
    message = MediaMessage(id="m1", chat_id=1, telegram_message_id=1, caption_data=CaptionData(product_name="Widget"))

    assert [m.glide_row_id for m in _matcher(catalog).find_matches_for_message(message)] == ["p1"]


def test_manual_link_and_reverse_lookup() -> None:
    matcher = _matcher(FakeCatalog())

    matcher.link_message_to_product("m1", "p1")
    matcher.link_message_to_product("m2", "p1")

    assert sorted(m.id for m in matcher.messages_for_product("p1")) == ["m1", "m2"]


def test_window_tier_follows_configured_window() -> None:
    catalog = FakeCatalog(_product("p1", rowid_accounts="acc-1", product_purchase_date="2024-01-21"))
    caption = CaptionData(vendor_uid="Acme", purchase_date="2024-01-15")

    [match] = _matcher(catalog, date_window_days=7).find_matches(caption)

    assert catalog.filters[0].purchase_date_to == date(2024, 1, 22)
    assert match.match_score == 40
    assert "Purchase date within window (6 days difference)" in match.reasons


def test_score_product_window_argument_bounds_date_tier() -> None:
    product = _product("p1", product_purchase_date="2024-01-21")
    caption = CaptionData(purchase_date="2024-01-15")

    assert score_product(caption, product, vendor_filtered=False).match_score == 0
    assert score_product(caption, product, vendor_filtered=False, window_days=6).match_score == 10
