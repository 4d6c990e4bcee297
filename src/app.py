"""Application entry point for mediamatch: the watcher and the operator CLI."""

from __future__ import annotations

import argparse
import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional

from art import tprint
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from telethon import events

import settings
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_mapper import build_media_message, source_key_from_message
from adapters.telegram_notifier import TelegramSavedMessagesNotifier
from client import authorize, build_client
from core.approval_queue import ApprovalQueue
from core.audit import AuditLog
from core.errors import MediaMatchError
from core.matcher import ProductMatcher
from core.models import (
    ApprovalQueueItem,
    ApprovalStatus,
    AuditEvent,
    BatchResult,
    MatchedProduct,
    MediaMessage,
    MessageFilter,
    NewProduct,
    QueueFilter,
)
from core.pipeline import MediaPipeline
from core.processor import MessageProcessor

NAME = "MEDIAMATCH"
FONT = "tarty-1"

console = Console()


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = {os.getenv(name) for name in redact_cfg.get("patterns", [])}
    # Longest first so a secret containing another is masked whole.
    return sorted((value for value in values if value), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    formatter = _RedactingFormatter(
        _collect_redaction_values(config),
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        handlers.append(logging.StreamHandler())

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/mediamatch.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                path,
                maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
                backupCount=int(file_cfg.get("backup_count", 5)),
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    if handlers:
        logging.basicConfig(level=level, handlers=handlers)


class _Services:
    """Core services wired to one SQLite database."""

    def __init__(self, db_path: str) -> None:
        self.storage = SQLiteStorage(db_path)
        self.storage.init_db()
        self.audit = AuditLog(self.storage)
        self.processor = MessageProcessor(self.storage, self.audit)
        self.matcher = ProductMatcher(self.storage, self.storage, self.storage, settings.MATCHING)
        self.queue = ApprovalQueue(
            self.storage,
            self.storage,
            self.storage,
            self.storage,
            self.audit,
            settings.QUEUE,
        )

    def pipeline(self, notifier) -> MediaPipeline:
        return MediaPipeline(
            self.storage,
            self.processor,
            self.matcher,
            self.queue,
            notifier,
            settings.SOURCES,
            settings.MATCHING,
        )


def _build_notifier(client):
    # Select the notification adapter based on configuration to keep the core
    # pipeline independent from delivery details.
    method = settings.NOTIFICATION_METHOD
    if method == "off":
        return None
    if method == "bot":
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when notification_method=bot")
        if not settings.BOT_CHAT_ID:
            raise RuntimeError("notifications.bot_chat_id is required for bot notifications")
        return TelegramBotNotifier(
            bot_token=bot_token,
            chat_id=str(settings.BOT_CHAT_ID),
            source_aliases=settings.SOURCE_ALIASES,
        )
    if method == "saved_messages":
        return TelegramSavedMessagesNotifier(client, settings.SOURCE_ALIASES)
    raise RuntimeError("notification_method must be 'saved_messages', 'bot' or 'off'")


def _run(services: _Services) -> None:
    _print_banner()
    logger = logging.getLogger(__name__)
    logger.info("Starting mediamatch with %s tracked source keys", len(settings.SOURCES))

    client = build_client()
    client.loop.run_until_complete(client.connect())
    client.loop.run_until_complete(authorize(client))

    notifier = _build_notifier(client)
    logger.info("Selected notification method - %s", settings.NOTIFICATION_METHOD)
    pipeline = services.pipeline(notifier)

    @client.on(events.NewMessage(incoming=True))
    async def on_new_message(event) -> None:
        try:
            message = event.message
            await pipeline.handle(build_media_message(message), source_key_from_message(message))
        except Exception:
            logger.exception("Error while processing message")

    @client.on(events.MessageEdited())
    async def on_edited_message(event) -> None:
        try:
            message = event.message
            await pipeline.handle_edit(build_media_message(message), source_key_from_message(message))
        except Exception:
            logger.exception("Error while processing edited message")

    client.start()
    logger.info("Client connected. Listening for media messages...")
    client.run_until_disconnected()


def _queue_table(items: Iterable[ApprovalQueueItem], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Queue id", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Product")
    table.add_column("Vendor")
    table.add_column("Purchased")
    table.add_column("Best match")
    table.add_column("Score", justify="right")
    for item in items:
        table.add_row(
            item.id,
            item.status.value,
            item.suggested_product_name or "",
            item.suggested_vendor_uid or "",
            item.suggested_purchase_date or "",
            item.best_match_product_id or "",
            str(item.best_match_score) if item.best_match_score is not None else "",
        )
    return table


def _messages_table(messages: list[MediaMessage]) -> Table:
    table = Table(title="Media messages")
    table.add_column("Message id", style="cyan", no_wrap=True)
    table.add_column("Chat")
    table.add_column("Type")
    table.add_column("State")
    table.add_column("Product")
    table.add_column("Caption")
    for message in messages:
        table.add_row(
            message.id,
            message.chat_title or str(message.chat_id),
            message.media_type or "",
            message.processing_state.value,
            message.glide_row_id or "",
            (message.caption or "").splitlines()[0] if message.caption else "",
        )
    return table


def _matches_table(matches: list[MatchedProduct]) -> Table:
    table = Table(title="Product matches")
    table.add_column("Product id", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Purchased")
    table.add_column("Score", justify="right")
    table.add_column("Why")
    for match in matches:
        product = match.product
        table.add_row(
            match.glide_row_id,
            product.display_name or product.vendor_product_name or "",
            product.product_purchase_date or "",
            str(match.match_score),
            match.match_reason,
        )
    return table


def _audit_table(events_: list[AuditEvent]) -> Table:
    table = Table(title="Audit log")
    table.add_column("When", no_wrap=True)
    table.add_column("Event")
    table.add_column("Status")
    table.add_column("Correlation id", style="dim")
    table.add_column("Details")
    for event in events_:
        table.add_row(
            event.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            event.event_type,
            event.status if not event.error_message else f"{event.status}: {event.error_message}",
            event.correlation_id,
            json.dumps(event.details, default=str),
        )
    return table


def _print_batch(result: BatchResult) -> None:
    console.print(f"[green]{result.success} succeeded[/green], [red]{result.failed} failed[/red]")
    for outcome in result.outcomes:
        if not outcome.ok:
            console.print(f"  {outcome.queue_id}: {outcome.error}")


def _dispatch(args: argparse.Namespace, services: _Services) -> None:
    if args.command == "process":
        message = services.processor.process_media_message(args.message_id)
        item = services.queue.enqueue(message)
        console.print(f"Message {message.id} is {message.processing_state.value}; queue item {item.id}")
    elif args.command == "reset":
        message = services.processor.reset_processing(args.message_id)
        console.print(f"Message {message.id} reset to {message.processing_state.value}")
    elif args.command == "messages":
        found, total = services.storage.list_messages(
            MessageFilter(
                chat_id=args.chat_id,
                media_type=args.media_type,
                media_group_id=args.group,
                include_processing=args.all,
            ),
            page=args.page,
            page_size=settings.QUEUE.page_size,
        )
        console.print(_messages_table(found))
        console.print(f"Page {args.page}, {total} messages in total")
    elif args.command == "match":
        # Matching is a pipeline step; no notifier is needed for a refresh.
        pipeline = services.pipeline(None)
        matches, item = pipeline.refresh_matches(args.message_id)
        console.print(_matches_table(matches))
        console.print(f"Queue item {item.id}: best match {item.best_match_product_id or '-'}")
        siblings = pipeline.group_messages(args.message_id)
        if siblings:
            # Album photos usually show the same product; batch-approve them together.
            console.print(_messages_table(siblings))
    elif args.command == "queue":
        page = services.queue.list_items(
            QueueFilter(
                status=ApprovalStatus(args.status),
                search=args.search,
                limit=args.limit or settings.QUEUE.page_size,
                offset=args.offset,
                vendor_id=args.vendor,
            )
        )
        console.print(_queue_table(page.items, f"{page.status.value} queue"))
        console.print(f"Showing {page.returned_count} of {page.total_count} (offset {page.offset})")
    elif args.command == "approve":
        item = services.queue.approve(args.queue_id, args.product_id)
        console.print(f"Approved {item.id} -> {item.linked_product_id}")
    elif args.command == "reject":
        item = services.queue.reject(args.queue_id, args.reason)
        console.print(f"Rejected {item.id}")
    elif args.command == "batch-approve":
        _print_batch(services.queue.batch_approve(args.queue_ids, args.product_id))
    elif args.command == "batch-reject":
        _print_batch(services.queue.batch_reject(args.queue_ids, args.reason))
    elif args.command == "create-product":
        item = services.queue.create_product_from_queue(
            args.queue_id,
            NewProduct(
                product_name=args.name,
                vendor_id=args.vendor_id,
                purchase_date=args.purchase_date,
                purchase_order_id=args.purchase_order_id,
                product_code=args.code,
                description=args.description,
                category=args.category,
                price=args.price,
            ),
        )
        console.print(f"Created product {item.linked_product_id} and approved {item.id}")
    elif args.command == "audit":
        if args.correlation:
            found = services.audit.timeline(args.entity_id)
        else:
            found = services.storage.list_recent_events(args.entity_id, limit=args.limit)
        console.print(_audit_table(found))
    elif args.command == "seed":
        with open(args.path, "r", encoding="utf-8") as handle:
            accounts, products = services.storage.import_catalog(json.load(handle))
        console.print(f"Imported {accounts} accounts and {products} products")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mediamatch")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the Telegram watcher")

    process = subparsers.add_parser("process", help="(Re)process one stored message")
    process.add_argument("message_id")
    reset = subparsers.add_parser("reset", help="Reset a message to initialized")
    reset.add_argument("message_id")
    messages = subparsers.add_parser("messages", help="List stored media messages")
    messages.add_argument("--chat-id", type=int)
    messages.add_argument("--media-type", choices=["photo", "video", "document"])
    messages.add_argument("--group", help="Only messages of one media group")
    messages.add_argument("--all", action="store_true", help="Include messages still processing")
    messages.add_argument("--page", type=int, default=1)
    match = subparsers.add_parser("match", help="Find catalog matches for a message")
    match.add_argument("message_id")

    queue = subparsers.add_parser("queue", help="List approval queue items")
    queue.add_argument("--status", default=ApprovalStatus.PENDING.value, choices=[s.value for s in ApprovalStatus])
    queue.add_argument("--search")
    queue.add_argument("--vendor")
    queue.add_argument("--limit", type=int)
    queue.add_argument("--offset", type=int, default=0)

    approve = subparsers.add_parser("approve", help="Approve a queue item against a product")
    approve.add_argument("queue_id")
    approve.add_argument("product_id")
    reject = subparsers.add_parser("reject", help="Reject a queue item")
    reject.add_argument("queue_id")
    reject.add_argument("--reason")

    batch_approve = subparsers.add_parser("batch-approve", help="Approve several items against one product")
    batch_approve.add_argument("product_id")
    batch_approve.add_argument("queue_ids", nargs="+")
    batch_reject = subparsers.add_parser("batch-reject", help="Reject several items")
    batch_reject.add_argument("queue_ids", nargs="+")
    batch_reject.add_argument("--reason")

    create = subparsers.add_parser("create-product", help="Create a product from a queue item and approve it")
    create.add_argument("queue_id")
    create.add_argument("--name")
    create.add_argument("--vendor-id")
    create.add_argument("--purchase-date")
    create.add_argument("--purchase-order-id")
    create.add_argument("--code")
    create.add_argument("--description")
    create.add_argument("--category")
    create.add_argument("--price", type=float)

    audit = subparsers.add_parser("audit", help="Show audit events for a message or correlation id")
    audit.add_argument("entity_id")
    audit.add_argument("--correlation", action="store_true", help="Treat the id as a correlation id")
    audit.add_argument("--limit", type=int, default=50)

    seed = subparsers.add_parser("seed", help="Import accounts and products from a JSON file")
    seed.add_argument("path")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    _configure_logging()
    services = _Services(settings.DB_PATH)

    if args.command in (None, "run"):
        _run(services)
        return
    try:
        _dispatch(args, services)
    except (MediaMatchError, ValueError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
