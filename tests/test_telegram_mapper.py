from __future__ import annotations

from datetime import datetime, timezone

from telethon.tl.types import PeerChannel, PeerUser

from adapters.telegram_mapper import build_media_message, media_type_from_message, source_key_from_message


class DummyChat:
    def __init__(self, username: "str | None" = None, title: "str | None" = None) -> None:
        self.username = username
        self.title = title


class DummyFile:
    mime_type = "image/jpeg"
    width = 1280
    height = 960
    duration = None
    size = 204800


class DummyMedia:
    def __init__(self, media_id: int) -> None:
        self.id = media_id


class DummyMessage:
    def __init__(
        self,
        *,
        message_id: int = 10,
        text: str = "",
        chat: "DummyChat | None" = None,
        peer_id=None,
        photo=None,
        video=None,
        document=None,
        grouped_id: "int | None" = None,
        edit_date: "datetime | None" = None,
    ) -> None:
        self.chat_id = -100123
        self.id = message_id
        self.raw_text = text
        self.chat = chat
        self.peer_id = peer_id
        self.photo = photo
        self.video = video
        self.document = document
        self.file = DummyFile() if (photo or video or document) else None
        self.grouped_id = grouped_id
        self.edit_date = edit_date
        self.date = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_photo_message_maps_media_fields() -> None:
    message = DummyMessage(
        text="Widget\nVendor: Acme",
        chat=DummyChat(title="Supplier drops"),
        peer_id=PeerChannel(channel_id=123),
        photo=DummyMedia(555),
        grouped_id=987,
    )

    mapped = build_media_message(message)

    assert mapped.media_type == "photo"
    assert mapped.mime_type == "image/jpeg"
    assert (mapped.width, mapped.height, mapped.file_size) == (1280, 960, 204800)
    assert mapped.file_unique_id == "555"
    assert mapped.media_group_id == "987"
    assert mapped.public_url == "https://t.me/c/123/10"
    assert mapped.chat_title == "Supplier drops"
    assert mapped.caption == "Widget\nVendor: Acme"
    assert mapped.telegram_message_id == 10
    assert mapped.is_edited is False


def test_public_chat_permalink_and_source_key() -> None:
    message = DummyMessage(chat=DummyChat(username="Supplier"), video=DummyMedia(1), document=DummyMedia(1))

    mapped = build_media_message(message)

    assert mapped.media_type == "video"
    assert mapped.public_url == "https://t.me/Supplier/10"
    assert source_key_from_message(message) == "@supplier"


def test_text_message_has_no_media() -> None:
    message = DummyMessage(text="just chatting", peer_id=PeerUser(user_id=5))

    mapped = build_media_message(message)

    assert media_type_from_message(message) is None
    assert mapped.media_type is None
    assert mapped.mime_type is None
    assert mapped.public_url is None
    assert source_key_from_message(message) == "chat_id:-100123"


def test_empty_caption_and_edit_flags() -> None:
    edited_at = datetime(2024, 1, 2, tzinfo=timezone.utc)
    message = DummyMessage(document=DummyMedia(9), edit_date=edited_at)

    mapped = build_media_message(message)

    assert mapped.media_type == "document"
    assert mapped.caption is None
    assert mapped.is_edited is True
    assert mapped.edit_date == edited_at
