"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
import re
from datetime import datetime
from zoneinfo import ZoneInfo

from core.config import NotificationConfig

# Characters that must be escaped anywhere in Telegram MarkdownV2 text.
_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_markdown_v2(value: str) -> str:
    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", value)


def _format_markdown_v2(feed_name: str, text: str, received: str) -> str:
    """Create the MarkdownV2 body used by the Bot API adapter."""

    quoted = "\n".join(f">{line}" for line in escape_markdown_v2(text).split("\n"))
    return f"🔔 *{escape_markdown_v2(feed_name)}*\n{quoted}\n\n🕒 `{escape_markdown_v2(received)}`"


def _format_html(feed_name: str, text: str, received: str) -> str:
    """Create the HTML body used by the Telethon adapter."""

    quoted = "\n".join(html.escape(line) for line in text.split("\n"))
    return (
        f"🔔 <b>{html.escape(feed_name)}</b>\n"
        f"<blockquote>{quoted}</blockquote>\n\n"
        f"🕒 <code>{html.escape(received)}</code>"
    )


def format_notification(feed_name: str, text: str, received_at: datetime, mode: str, timezone: str) -> str:
    """Return the notification formatted for the requested mode."""

    received = received_at.astimezone(ZoneInfo(timezone)).strftime("%H:%M:%S")
    if mode == "markdown_v2":
        return _format_markdown_v2(feed_name, text, received)
    if mode == "html":
        return _format_html(feed_name, text, received)
    raise ValueError(f"Unsupported notification format: {mode}")


class NotificationRenderer:
    """RendererPort implementation bound to one notification config."""

    def __init__(self, config: NotificationConfig) -> None:
        if config.mode not in {"markdown_v2", "html"}:
            raise ValueError(f"Unsupported notification format: {config.mode}")
        self._config = config

    @property
    def mode(self) -> str:
        return self._config.mode

    def render(self, feed_name: str, text: str, received_at: datetime) -> str:
        return format_notification(feed_name, text, received_at, self._config.mode, self._config.timezone)
