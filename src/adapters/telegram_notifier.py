"""Telethon delivery sink.

Sends alerts through a Telethon client logged in as a bot.
"""

from __future__ import annotations

from typing import Optional

from telethon import errors

from core.errors import DeliveryError
from core.models import MEDIA_VIDEO

# Telethon's "md" parser is classic Markdown, not MarkdownV2, so only HTML
# bodies render correctly through this sink.
_PARSE_MODES = {"html": "html"}


class TelethonNotifier:
    """Delivery sink backed by an authorized TelegramClient."""

    def __init__(self, client, mode: str = "html") -> None:
        if mode not in _PARSE_MODES:
            raise ValueError(f"Telethon delivery supports only html formatting, got {mode!r}")
        self._client = client
        self._parse_mode = _PARSE_MODES[mode]

    async def send(
        self,
        recipient_id: int,
        body: str,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> None:
        """Send one rendered item; raises DeliveryError on failure."""

        try:
            if media_url:
                await self._client.send_file(
                    recipient_id,
                    media_url,
                    caption=body,
                    parse_mode=self._parse_mode,
                    supports_streaming=media_type == MEDIA_VIDEO,
                )
            else:
                await self._client.send_message(
                    recipient_id,
                    body,
                    parse_mode=self._parse_mode,
                    link_preview=False,
                )
        except (errors.RPCError, ValueError, ConnectionError) as e:
            raise DeliveryError(recipient_id, str(e)) from e
