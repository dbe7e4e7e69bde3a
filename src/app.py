"""Application entry point for the alertscope watcher."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.delivery import AlertDelivery
from adapters.notification_formatting import NotificationRenderer
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_notifier import TelethonNotifier
from adapters.telegram_web_fetcher import TelegramWebFetcher
from client import start_bot_client
from core.alert_bus import AlertBus
from core.config import FetcherConfig, IngestionConfig, NotificationConfig, SchedulerConfig
from core.errors import PersistenceError
from core.processor import IngestionPipeline
from core.scheduler import PollScheduler

NAME = "ALERTSCOPE"
FONT = "tarty-1"


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
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/alertscope.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


async def _build_sink():
    """Select the delivery adapter; returns (sink, client or None)."""

    load_dotenv()
    bot_token = os.getenv("BOT_TOKEN")
    if not bot_token:
        raise RuntimeError("BOT_TOKEN is required for alert delivery")

    if settings.NOTIFICATION_METHOD == "bot_api":
        return TelegramBotNotifier(bot_token, mode=settings.NOTIFICATION_FORMAT), None
    if settings.NOTIFICATION_METHOD == "telethon":
        if settings.NOTIFICATION_FORMAT != "html":
            raise RuntimeError("notification_method 'telethon' requires notification_format 'html'")
        client = await start_bot_client(bot_token)
        return TelethonNotifier(client, mode=settings.NOTIFICATION_FORMAT), client
    raise RuntimeError("notification_method must be 'bot_api' or 'telethon'")


async def _serve(storage: SQLiteStorage) -> None:
    logger = logging.getLogger(__name__)

    # Select the delivery adapter based on configuration to keep the core
    # pipeline independent from delivery details.
    sink, client = await _build_sink()
    logger.info("Selected notification method - %s", settings.NOTIFICATION_METHOD)

    bus = AlertBus(max_pending=settings.ALERTS_MAX_PENDING)
    bus.subscribe(AlertDelivery(sink).handle)

    renderer = NotificationRenderer(
        NotificationConfig(mode=settings.NOTIFICATION_FORMAT, timezone=settings.NOTIFICATION_TIMEZONE)
    )
    pipeline = IngestionPipeline(
        registry=storage,
        messages=storage,
        rules=storage,
        subscribers=storage,
        bus=bus,
        renderer=renderer,
        config=IngestionConfig(boilerplate=settings.BOILERPLATE),
    )
    fetcher = TelegramWebFetcher(
        FetcherConfig(
            base_url=settings.FETCH_BASE_URL,
            timeout_seconds=settings.FETCH_TIMEOUT_SECONDS,
            user_agent=settings.FETCH_USER_AGENT,
        )
    )
    scheduler = PollScheduler(
        registry=storage,
        fetcher=fetcher,
        pipeline=pipeline,
        config=SchedulerConfig(tick_seconds=settings.TICK_SECONDS),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still works.
            pass

    try:
        await scheduler.start()
    finally:
        await bus.close()
        if client is not None:
            await client.disconnect()


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting alertscope")
    storage = _open_storage()
    logger.info(
        "%s feeds and %s rules are loaded",
        len(storage.list_feeds()),
        len(storage.list_rules()),
    )

    try:
        asyncio.run(_serve(storage))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


def _list_feeds() -> None:
    feeds = _open_storage().list_feeds()
    if not feeds:
        print("No feeds registered.")
        return
    for feed in feeds:
        polled = feed.last_polled_at.isoformat() if feed.last_polled_at else "never"
        print(f"{feed.id}. {feed.display_name} | {feed.handle} | every {feed.poll_interval_ms} ms | last {polled}")


def _add_feed(link: str, name: Optional[str], interval_ms: Optional[int]) -> None:
    interval = interval_ms or settings.DEFAULT_POLL_INTERVAL_MS
    feed_id = _open_storage().add_feed(link, interval, name=name)
    print(f"Added feed {feed_id}: {link} (every {interval} ms)")


def _list_rules() -> None:
    rules = _open_storage().list_rules()
    if not rules:
        print("No rules. Nothing will be alerted until an include phrase is added.")
        return
    for rule in rules:
        kind = "miss" if rule.is_exclusion else "hit"
        print(f"{rule.id}. [{kind}] {rule.phrase}")


def _add_rule(phrase: str, is_exclusion: bool) -> None:
    rule_id = _open_storage().add_rule(phrase.strip(), is_exclusion)
    print(f"Added rule {rule_id}: {phrase.strip()}")


def _delete_rule(rule_id: int) -> None:
    if _open_storage().delete_rule(rule_id):
        print(f"Deleted rule {rule_id}")
    else:
        print(f"Rule {rule_id} not found")


def _subscribe(feed_id: int, recipient_id: int) -> None:
    _open_storage().subscribe(feed_id, recipient_id)
    print(f"Recipient {recipient_id} subscribed to feed {feed_id}")


def _set_silent(recipient_id: int, silent: bool) -> None:
    if _open_storage().set_silent(recipient_id, silent):
        print(f"Recipient {recipient_id} silent mode {'on' if silent else 'off'}")
    else:
        print(f"Recipient {recipient_id} not found")


def _set_banned(recipient_id: int, banned: bool) -> None:
    _open_storage().set_banned(recipient_id, banned)
    print(f"Recipient {recipient_id} {'banned' if banned else 'unbanned'}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="alertscope")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the watcher")
    subparsers.add_parser("feeds", help="List registered feeds")

    add_feed = subparsers.add_parser("add-feed", help="Register a channel to poll")
    add_feed.add_argument("link", help="Channel handle or t.me link")
    add_feed.add_argument("--name", help="Display name used in alerts")
    add_feed.add_argument("--interval-ms", type=int, help="Polling interval in milliseconds")

    subparsers.add_parser("rules", help="List filter rules")
    hit = subparsers.add_parser("hit", help="Add an include phrase")
    hit.add_argument("phrase")
    miss = subparsers.add_parser("miss", help="Add an exclude phrase")
    miss.add_argument("phrase")
    delete = subparsers.add_parser("del-rule", help="Delete a rule by id")
    delete.add_argument("rule_id", type=int)

    subscribe = subparsers.add_parser("subscribe", help="Subscribe a recipient to a feed")
    subscribe.add_argument("feed_id", type=int)
    subscribe.add_argument("recipient_id", type=int)
    silent = subparsers.add_parser("silent", help="Toggle do-not-disturb for a recipient")
    silent.add_argument("recipient_id", type=int)
    silent.add_argument("state", choices=("on", "off"))
    ban = subparsers.add_parser("ban", help="Stop all alerts to a recipient")
    ban.add_argument("recipient_id", type=int)
    unban = subparsers.add_parser("unban", help="Lift a recipient ban")
    unban.add_argument("recipient_id", type=int)

    args = parser.parse_args(argv)
    try:
        if args.command == "feeds":
            _list_feeds()
        elif args.command == "add-feed":
            _add_feed(args.link, args.name, args.interval_ms)
        elif args.command == "rules":
            _list_rules()
        elif args.command in {"hit", "miss"}:
            _add_rule(args.phrase, is_exclusion=args.command == "miss")
        elif args.command == "del-rule":
            _delete_rule(args.rule_id)
        elif args.command == "subscribe":
            _subscribe(args.feed_id, args.recipient_id)
        elif args.command == "silent":
            _set_silent(args.recipient_id, args.state == "on")
        elif args.command in {"ban", "unban"}:
            _set_banned(args.recipient_id, args.command == "ban")
        else:
            _run()
    except PersistenceError as e:
        parser.exit(1, f"alertscope: {e}\n")


if __name__ == "__main__":
    main()
