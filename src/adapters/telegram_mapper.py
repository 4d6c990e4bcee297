"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

import uuid
from typing import Optional

from telethon.tl.custom import Message
from telethon.tl.types import PeerChannel, PeerChat

from core.models import MediaMessage
from core.source_keys import build_source_key


def source_key_from_message(message: Message) -> str:
    """Normalize a source key using a single rule enforced across the app."""

    chat = getattr(message, "chat", None)
    username = getattr(chat, "username", None)
    return build_source_key(username if isinstance(username, str) else None, message.chat_id)


def media_type_from_message(message: Message) -> Optional[str]:
    """Return photo, video, document or None for non-media messages."""

    if getattr(message, "photo", None):
        return "photo"
    if getattr(message, "video", None):
        return "video"
    if getattr(message, "document", None):
        return "document"
    return None


def build_permalink(message: Message) -> Optional[str]:
    chat = getattr(message, "chat", None)
    # Prefer public usernames for permalinks when available.
    if chat and getattr(chat, "username", None):
        return f"https://t.me/{chat.username}/{message.id}"

    peer_id = getattr(message, "peer_id", None)
    # Private groups/supergroups/channels can use the /c/ links.
    if isinstance(peer_id, PeerChannel):
        return f"https://t.me/c/{peer_id.channel_id}/{message.id}"
    if isinstance(peer_id, PeerChat):
        return f"https://t.me/c/{peer_id.chat_id}/{message.id}"
    # PeerUser has no chat/channel id; no permalink is possible.
    return None


def _media_id(message: Message) -> Optional[str]:
    media = getattr(message, "photo", None) or getattr(message, "document", None)
    media_id = getattr(media, "id", None)
    return str(media_id) if media_id is not None else None


def build_media_message(message: Message) -> MediaMessage:
    """Build a core MediaMessage from a Telethon Message.

    The returned message carries a fresh id; storage keeps the existing row
    when the (chat_id, message id) pair is already known.
    """

    file = getattr(message, "file", None) if media_type_from_message(message) else None
    chat = getattr(message, "chat", None)
    grouped_id = getattr(message, "grouped_id", None)
    caption = message.raw_text or None

    return MediaMessage(
        id=str(uuid.uuid4()),
        chat_id=message.chat_id,
        telegram_message_id=message.id,
        media_type=media_type_from_message(message),
        mime_type=getattr(file, "mime_type", None),
        file_unique_id=_media_id(message),
        public_url=build_permalink(message),
        width=getattr(file, "width", None),
        height=getattr(file, "height", None),
        duration=getattr(file, "duration", None),
        file_size=getattr(file, "size", None),
        chat_title=getattr(chat, "title", None),
        message_date=message.date,
        caption=caption,
        media_group_id=str(grouped_id) if grouped_id else None,
        is_edited=getattr(message, "edit_date", None) is not None,
        edit_date=getattr(message, "edit_date", None),
    )
