"""Public channel page fetcher.

Reads the server-rendered preview page of a channel (t.me/s/<handle>) and
maps each message block to a core RawItem. No login or API keys needed.
"""

from __future__ import annotations

import logging
import http.client
import re
import socket
import urllib.error
import urllib.request
from datetime import datetime
from typing import Optional

from bs4 import BeautifulSoup, Tag

from core.config import FetcherConfig
from core.errors import FetchError, ParseError
from core.models import MEDIA_PHOTO, MEDIA_VIDEO, RawItem

LOGGER = logging.getLogger(__name__)

_BACKGROUND_URL = re.compile(r"background-image\s*:\s*url\(\s*['\"]?(.*?)['\"]?\s*\)")

# Sub-blocks that quote or attribute other content and must not leak into
# the item's own text.
_QUOTED_SELECTORS = (
    ".tgme_widget_message_reply",
    ".tgme_widget_message_author",
    ".tgme_widget_message_forwarded_from",
    "blockquote",
)


def _background_image(node: Optional[Tag]) -> Optional[str]:
    if node is None:
        return None
    match = _BACKGROUND_URL.search(node.get("style", ""))
    if not match or not match.group(1):
        return None
    return match.group(1)


def _extract_media(message: Tag) -> tuple[Optional[str], Optional[str]]:
    photo_url = _background_image(message.select_one(".tgme_widget_message_photo_wrap"))
    if photo_url:
        return photo_url, MEDIA_PHOTO

    video_region = message.select_one(".tgme_widget_message_video_player")
    if video_region is not None:
        video = video_region.select_one("video[src]")
        if video is not None:
            return video["src"], MEDIA_VIDEO
        # Only a preview is rendered for large videos; still deliver as video.
        thumb = _background_image(video_region.select_one(".tgme_widget_message_video_thumb"))
        if thumb:
            return thumb, MEDIA_VIDEO
    return None, None


def _extract_text(message: Tag) -> str:
    for selector in _QUOTED_SELECTORS:
        for node in message.select(selector):
            node.decompose()
    text_node = message.select_one(".tgme_widget_message_text")
    if text_node is None:
        return ""
    for br in text_node.find_all("br"):
        br.replace_with("\n")
    return text_node.get_text().strip()


def _parse_source_item_id(data_post: str) -> Optional[int]:
    tail = data_post.rstrip("/").split("/")[-1]
    try:
        return int(tail)
    except ValueError:
        return None


def _parse_date(message: Tag) -> Optional[datetime]:
    time_node = message.select_one("time[datetime]")
    if time_node is None:
        return None
    try:
        return datetime.fromisoformat(time_node["datetime"])
    except ValueError:
        return None


def parse_block(wrap: Tag) -> Optional[RawItem]:
    """Map one message block to a RawItem, or None when it must be skipped."""

    message = wrap.select_one(".tgme_widget_message")
    if message is None:
        return None
    data_post = message.get("data-post")
    if not data_post:
        return None
    item_id = _parse_source_item_id(data_post)
    if item_id is None:
        LOGGER.debug("Skipping block with unparseable id %r", data_post)
        return None

    # Sender and media are read before text extraction strips sub-blocks.
    sender_node = message.select_one(".tgme_widget_message_from_author")
    sender = sender_node.get_text().strip() if sender_node is not None else ""
    media_url, media_type = _extract_media(message)
    date = _parse_date(message)
    text = _extract_text(message)

    if not text and media_url is None:
        return None
    if date is None:
        return None

    return RawItem(
        source_item_id=item_id,
        text=text,
        date=date,
        media_url=media_url,
        media_type=media_type,
        sender=sender or None,
    )


def parse_page(html: str) -> list[RawItem]:
    """Parse a channel preview page into RawItems in page order."""

    soup = BeautifulSoup(html, "html.parser")
    if soup.select_one(".tgme_channel_history") is None and not soup.select(".tgme_widget_message_wrap"):
        raise ParseError("channel history container not found")

    items: list[RawItem] = []
    for wrap in soup.select(".tgme_widget_message_wrap"):
        item = parse_block(wrap)
        if item is not None:
            items.append(item)
    return items


class TelegramWebFetcher:
    """Fetches and parses public channel pages with a bounded timeout."""

    def __init__(self, config: Optional[FetcherConfig] = None) -> None:
        self._config = config or FetcherConfig()

    def _url(self, handle: str) -> str:
        return f"{self._config.base_url.rstrip('/')}/{handle}"

    def _download(self, url: str) -> str:
        request = urllib.request.Request(url, method="GET")
        # Some hosts gate access on the client signature.
        request.add_header("User-Agent", self._config.user_agent)
        try:
            with urllib.request.urlopen(request, timeout=self._config.timeout_seconds) as response:
                charset = response.headers.get_content_charset() or "utf-8"
                return response.read().decode(charset, errors="replace")
        except urllib.error.HTTPError as e:
            raise FetchError(f"HTTP {e.code} for {url}") from e
        except (urllib.error.URLError, http.client.HTTPException, ConnectionError, socket.timeout, TimeoutError) as e:
            raise FetchError(f"{url}: {e}") from e
        except LookupError as e:
            # Unknown charset announced by the server.
            raise FetchError(f"{url}: {e}") from e

    def fetch(self, handle: str) -> list[RawItem]:
        url = self._url(handle)
        html = self._download(url)
        try:
            items = parse_page(html)
        except ParseError as e:
            raise ParseError(f"{url}: {e}") from e
        LOGGER.debug("Fetched %s item(s) from %s", len(items), url)
        return items
