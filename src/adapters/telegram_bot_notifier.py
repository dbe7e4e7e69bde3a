"""Telegram Bot API delivery sink.

Uses the Bot API for delivery so alerts are routed via a bot chat.
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request
from typing import Optional

from core.errors import DeliveryError
from core.models import MEDIA_PHOTO, MEDIA_VIDEO

_PARSE_MODES = {"markdown_v2": "MarkdownV2", "html": "HTML"}


class TelegramBotNotifier:
    """Delivery sink that sends messages, photos and videos via the Bot API."""

    def __init__(self, bot_token: str, mode: str = "markdown_v2", timeout: float = 10.0) -> None:
        self._bot_token = bot_token
        self._parse_mode = _PARSE_MODES[mode]
        self._timeout = timeout

    def _endpoint(self, method: str) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/{method}"

    def _build_call(
        self,
        recipient_id: int,
        body: str,
        media_url: Optional[str],
        media_type: Optional[str],
    ) -> tuple[str, dict]:
        payload: dict = {"chat_id": recipient_id, "parse_mode": self._parse_mode}
        if media_url and media_type == MEDIA_PHOTO:
            payload.update(photo=media_url, caption=body)
            return "sendPhoto", payload
        if media_url and media_type == MEDIA_VIDEO:
            payload.update(video=media_url, caption=body)
            return "sendVideo", payload
        payload.update(text=body, disable_web_page_preview=True)
        return "sendMessage", payload

    def _post(self, recipient_id: int, method: str, payload: dict) -> None:
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(method), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise DeliveryError(recipient_id, f"Bot API error {e.code}: {body}") from e
        except (urllib.error.URLError, OSError) as e:
            raise DeliveryError(recipient_id, str(e)) from e

    async def send(
        self,
        recipient_id: int,
        body: str,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> None:
        """Send one rendered item; raises DeliveryError on failure."""

        method, payload = self._build_call(recipient_id, body, media_url, media_type)
        # urllib blocks, so each send runs in its own thread to keep fan-out parallel.
        await asyncio.to_thread(self._post, recipient_id, method, payload)
