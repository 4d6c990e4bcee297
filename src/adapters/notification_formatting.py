"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
from datetime import datetime
from typing import Optional

from core.models import ApprovalQueueItem

DIVIDER = "──────────────"


def format_source_label(item: ApprovalQueueItem, source_aliases: dict[str, str]) -> str:
    """Return a human-friendly source label, using configured aliases."""

    details = item.message_details
    chat_id = details.get("chat_id")
    key = f"chat_id:{chat_id}" if chat_id is not None else None
    alias = source_aliases.get(key) if key else None
    title = details.get("chat_title") or key or "unknown"
    if alias:
        return f"{alias} ({title})"
    return title


def _timestamp(item: ApprovalQueueItem) -> str:
    raw = item.message_details.get("message_date")
    moment: Optional[datetime] = datetime.fromisoformat(raw) if raw else item.created_at
    if moment is None:
        return ""
    return moment.astimezone().strftime("%H:%M:%S %d-%m-%Y").strip()


def _suggestion_lines(item: ApprovalQueueItem) -> list[tuple[str, str]]:
    rows = [
        ("Product", item.suggested_product_name),
        ("Vendor", item.suggested_vendor_uid),
        ("Purchased", item.suggested_purchase_date),
        ("PO", item.suggested_purchase_order_uid),
    ]
    return [(label, value) for label, value in rows if value]


def _match_line(item: ApprovalQueueItem) -> Optional[str]:
    if not item.best_match_product_id:
        return None
    return f"{item.best_match_product_id} (score {item.best_match_score})"


def _format_markdown(item: ApprovalQueueItem, source_aliases: dict[str, str]) -> str:
    """Create the Markdown notification body used by Saved Messages."""

    # Telegram Markdown is supported by passing parse_mode="Markdown".
    def escape_md(value: str) -> str:
        for ch in r"*[`_":
            value = value.replace(ch, f"\\{ch}")
        return value

    lines = [
        f"[{_timestamp(item)}]",
        f"**Queue:**  {escape_md(item.status.value)}",
        f"**Source:** {escape_md(format_source_label(item, source_aliases))}",
        DIVIDER,
    ]
    for label, value in _suggestion_lines(item):
        lines.append(f"**{label}:** {escape_md(value)}")

    caption = item.message_details.get("caption")
    if caption:
        lines.extend(["", escape_md(caption)])

    match = _match_line(item)
    if match:
        lines.extend(["", "**Best match:**", escape_md(match)])
        lines.extend(escape_md(reason) for reason in item.best_match_reasons)

    link = item.message_details.get("public_url")
    if link:
        lines.extend(["", "**Link:**", link])

    lines.extend(["", f"`{item.id}`", DIVIDER])
    return "\n".join(lines)


def _format_html(item: ApprovalQueueItem, source_aliases: dict[str, str]) -> str:
    """Create the HTML notification body used by the Bot API adapter."""

    parts = [
        f"[{html.escape(_timestamp(item))}]",
        f"<b>Queue:</b> {html.escape(item.status.value)}",
        f"<b>Source:</b> {html.escape(format_source_label(item, source_aliases))}",
        DIVIDER,
    ]
    for label, value in _suggestion_lines(item):
        parts.append(f"<b>{label}:</b> {html.escape(value)}")

    caption = item.message_details.get("caption")
    if caption:
        parts.extend(["", html.escape(caption)])

    match = _match_line(item)
    if match:
        parts.extend(["", "<b>Best match:</b>", html.escape(match)])
        parts.extend(html.escape(reason) for reason in item.best_match_reasons)

    link = item.message_details.get("public_url")
    if link:
        safe_link = html.escape(link)
        parts.extend(["", "<b>Link:</b>", f"<a href=\"{safe_link}\">{safe_link}</a>"])

    parts.extend(["", f"<code>{html.escape(item.id)}</code>", DIVIDER])
    return "\n".join(parts)


def format_notification(item: ApprovalQueueItem, source_aliases: dict[str, str], mode: str) -> str:
    """Return the notification formatted for the requested mode."""

    if mode == "markdown":
        return _format_markdown(item, source_aliases)
    if mode == "html":
        return _format_html(item, source_aliases)
    raise ValueError(f"Unsupported notification format: {mode}")
