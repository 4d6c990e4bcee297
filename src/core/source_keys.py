"""Helpers for working with chat source keys.

A source key is either ``@username`` (lowercase) or ``chat_id:<id>``. The
same Telegram chat can show up under several numeric ids depending on the
API surface, so configured keys are expanded to all equivalent forms.
"""

from __future__ import annotations

from typing import Iterable, Optional

CHAT_ID_PREFIX = "chat_id:"


def build_source_key(username: Optional[str], chat_id: int) -> str:
    """Return the canonical key for a chat, preferring the public username."""

    if username:
        return f"@{username.lower()}"
    return f"{CHAT_ID_PREFIX}{chat_id}"


def _chat_id_variants(raw_chat_id: int) -> set[int]:
    """Return equivalent chat id variants (peer id, chat id, channel id)."""

    variants: set[int] = {raw_chat_id}
    if raw_chat_id < 0:
        raw_text = str(raw_chat_id)
        if raw_text.startswith("-100"):
            # Channel/supergroup peer id: -100<channel_id>
            channel_part = raw_text[4:]
            if channel_part.isdigit():
                variants.add(int(channel_part))
        else:
            variants.add(abs(raw_chat_id))
        return variants

    variants.add(-raw_chat_id)
    variants.add(-1000000000000 - raw_chat_id)
    return variants


def expand_source_key(source_key: str) -> set[str]:
    """Expand a configured key to every equivalent form."""

    if source_key.startswith("@"):
        return {source_key.lower()}
    if not source_key.startswith(CHAT_ID_PREFIX):
        return {source_key}
    try:
        raw_chat_id = int(source_key[len(CHAT_ID_PREFIX):])
    except ValueError:
        return {source_key}
    return {f"{CHAT_ID_PREFIX}{variant}" for variant in _chat_id_variants(raw_chat_id)}


def normalize_sources(raw_sources: Iterable[dict]) -> tuple[set[str], dict[str, str]]:
    """Return (enabled keys incl. variants, alias per key) from config entries."""

    sources: set[str] = set()
    aliases: dict[str, str] = {}
    for entry in raw_sources:
        source_key = entry.get("source_key")
        if not source_key or not entry.get("enabled", True):
            continue
        expanded = expand_source_key(source_key)
        sources.update(expanded)
        alias = entry.get("alias")
        if alias:
            for key in expanded:
                aliases.setdefault(key, alias)
    return sources, aliases
