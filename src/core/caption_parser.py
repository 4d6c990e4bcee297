"""Caption parsing (core domain).

Captions are free text, so extraction is best effort: every field has its own
rule, rules never depend on each other, and a rule that fails is skipped
rather than aborting the parse.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import logging
import re
from typing import Callable, Optional

from dateutil import parser as date_parser

from core.models import AnalyzedContent, CaptionData, utcnow

LOGGER = logging.getLogger(__name__)

PARSE_VERSION = "1.0.0"

# Separators allowed between a label and its value ("Qty: 5", "Qty - 5", "Qty 5").
_SEP = r"[\s:=-]*"
# Identifier values must start with a word character so "SKU-123" is not read
# as label "SKU" with value "-123".
_IDENT = r"(\w[\w-]*)"


@dataclass(frozen=True)
class FieldRule:
    """One extraction rule: a field name, a pattern and a normalizer."""

    field: str
    pattern: re.Pattern
    normalize: Callable[[str], object]


def _first_group(match: re.Match) -> Optional[str]:
    for group in match.groups():
        if group is not None:
            return group
    return None


def _clean(value: str) -> Optional[str]:
    value = value.strip()
    return value or None


def _to_quantity(value: str) -> Optional[float]:
    value = value.strip()
    return float(value) if value else None


_DATE_FORMATS = (
    # MM/DD/YYYY
    (re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})$"), (3, 1, 2)),
    # YYYY/MM/DD
    (re.compile(r"^(\d{4})[/.-](\d{1,2})[/.-](\d{1,2})$"), (1, 2, 3)),
    # DD/MM/YYYY
    (re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})$"), (3, 2, 1)),
)


def normalize_date(raw: str) -> Optional[str]:
    """Normalize a caption date to YYYY-MM-DD.

    Explicit formats are tried in order and a candidate only wins if it is a
    real calendar date, so 25/12/2024 falls through MM/DD to DD/MM. When no
    explicit format fits, dateutil gets a last try. Returns None on failure.
    """

    raw = raw.strip()
    if not raw:
        return None

    for pattern, (year_idx, month_idx, day_idx) in _DATE_FORMATS:
        match = pattern.match(raw)
        if not match:
            continue
        try:
            parsed = date(
                int(match.group(year_idx)),
                int(match.group(month_idx)),
                int(match.group(day_idx)),
            )
        except ValueError:
            continue
        return parsed.isoformat()

    try:
        return date_parser.parse(raw).date().isoformat()
    except (ValueError, OverflowError):
        LOGGER.debug("Unparseable caption date: %s", raw)
        return None


def _label(words: str) -> str:
    return rf"\b(?:{words})\b"


_PRODUCT_WORDS = r"product(?:\s+name)?"
_CODE_WORDS = "code|sku|item"
_VENDOR_WORDS = "vendor|supplier|from"
_DATE_WORDS = "purchased?|bought|date"
_QUANTITY_WORDS = "qty|quantity|amount"
_NOTES_WORDS = "notes?|comments?|remarks?"
_ORDER_WORDS = "po|order|ref"
_SKU_WORDS = "sku"

# A first-line fragment that is nothing but a label ("Vendor: Acme") is not a name.
_LABEL_ONLY = "|".join(
    (_CODE_WORDS, _VENDOR_WORDS, _DATE_WORDS, _QUANTITY_WORDS, _NOTES_WORDS, _ORDER_WORDS)
)
_NAME_GUESS = rf"^(?!\s*(?:{_LABEL_ONLY})\s*(?:[:#\n]|$))([^\n#:]+)"

# Rules run in this order; the order is also the order of identified_fields.
RULES: tuple[FieldRule, ...] = (
    FieldRule(
        "product_name",
        re.compile(rf"{_label(_PRODUCT_WORDS)}{_SEP}([^\n]+)|{_NAME_GUESS}", re.IGNORECASE),
        _clean,
    ),
    FieldRule(
        "product_code",
        re.compile(rf"(?:{_label(_CODE_WORDS)}|#)\s*[:#=]?\s*{_IDENT}", re.IGNORECASE),
        _clean,
    ),
    FieldRule(
        "vendor_uid",
        re.compile(rf"{_label(_VENDOR_WORDS)}{_SEP}{_IDENT}", re.IGNORECASE),
        _clean,
    ),
    FieldRule(
        "purchase_date",
        re.compile(
            rf"{_label(_DATE_WORDS)}{_SEP}"
            r"(\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}|\d{4}[/.-]\d{1,2}[/.-]\d{1,2})",
            re.IGNORECASE,
        ),
        normalize_date,
    ),
    FieldRule(
        "product_quantity",
        re.compile(rf"{_label(_QUANTITY_WORDS)}{_SEP}(\d+(?:\.\d+)?)", re.IGNORECASE),
        _to_quantity,
    ),
    FieldRule(
        "notes",
        re.compile(rf"{_label(_NOTES_WORDS)}{_SEP}([^\n#]+)", re.IGNORECASE),
        _clean,
    ),
    FieldRule(
        "purchase_order_uid",
        re.compile(rf"{_label(_ORDER_WORDS)}\s*[:#=]?\s*{_IDENT}", re.IGNORECASE),
        _clean,
    ),
    FieldRule(
        "product_sku",
        re.compile(rf"{_label(_SKU_WORDS)}\s*[:#=]?\s*{_IDENT}", re.IGNORECASE),
        _clean,
    ),
)


class CaptionParser:
    """Extract CaptionData from caption text.

    Parsing never raises. The most recent failure, if any, is exposed on
    ``last_error`` for callers that want to surface it.
    """

    def __init__(self, rules: tuple[FieldRule, ...] = RULES) -> None:
        self._rules = rules
        self.last_error: Optional[str] = None

    @property
    def rule_count(self) -> int:
        return len(self._rules)

    def _apply(self, rule: FieldRule, text: str) -> object:
        match = rule.pattern.search(text)
        if not match:
            return None
        raw = _first_group(match)
        if raw is None:
            return None
        return rule.normalize(raw)

    def parse(self, text: Optional[str]) -> CaptionData:
        """Parse caption text into CaptionData (possibly empty)."""

        self.last_error = None
        if not text:
            return CaptionData()

        try:
            values: dict[str, object] = {}
            for rule in self._rules:
                # One broken rule must not cost us the other fields.
                try:
                    value = self._apply(rule, text)
                except Exception as exc:
                    self.last_error = f"{rule.field}: {exc}"
                    LOGGER.warning("Caption rule %s failed: %s", rule.field, exc)
                    continue
                if value is not None and value != "":
                    values[rule.field] = value
            return CaptionData(**values)
        except Exception as exc:
            self.last_error = str(exc) or "Unknown error parsing caption"
            LOGGER.exception("Error parsing caption")
            return CaptionData()

    def confidence(self, data: CaptionData) -> float:
        """Share of rules that produced a value, capped at 1.0."""

        if not self._rules:
            return 0.0
        return min(1.0, len(data.present_fields()) / len(self._rules))

    def analyze(self, text: Optional[str]) -> AnalyzedContent:
        """Parse caption text and attach parse metadata."""

        data = self.parse(text)
        return AnalyzedContent(
            **{name: getattr(data, name) for name in data.present_fields()},
            raw_text=text or "",
            parse_version=PARSE_VERSION,
            parsed_at=utcnow().isoformat(),
            confidence_score=self.confidence(data),
            identified_fields=tuple(data.present_fields()),
        )


_DEFAULT_PARSER = CaptionParser()


def parse_caption(text: Optional[str]) -> CaptionData:
    """Parse caption text with the default rule set."""

    return _DEFAULT_PARSER.parse(text)


def analyze_caption(text: Optional[str]) -> AnalyzedContent:
    """Analyze caption text with the default rule set."""

    return _DEFAULT_PARSER.analyze(text)
