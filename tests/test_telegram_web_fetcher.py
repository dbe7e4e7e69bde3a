from __future__ import annotations

import http.client
import urllib.error
from datetime import datetime, timezone
from email.message import Message
from typing import Optional

import pytest

from adapters.telegram_web_fetcher import TelegramWebFetcher, parse_page
from core.config import FetcherConfig
from core.errors import FetchError, ParseError

PAGE = """
<html><body>
<section class="tgme_channel_history js-message_history">

  <div class="tgme_widget_message_wrap js-widget_message_wrap">
    <div class="tgme_widget_message js-widget_message" data-post="alerts/101">
      <div class="tgme_widget_message_author accent_color">
        <a class="tgme_widget_message_owner_name"><span>Alerts</span></a>
      </div>
      <a class="tgme_widget_message_reply" href="https://t.me/alerts/99">
        <div class="tgme_widget_message_author accent_color">Someone</div>
        <div class="tgme_widget_message_text js-message_reply_text">quoted old news</div>
      </a>
      <div class="tgme_widget_message_text js-message_text" dir="auto">First line<br/>Second <b>line</b></div>
      <div class="tgme_widget_message_footer">
        <span class="tgme_widget_message_from_author">Admin</span>
        <a class="tgme_widget_message_date"><time datetime="2024-01-01T10:00:00+00:00" class="time">10:00</time></a>
      </div>
    </div>
  </div>

  <div class="tgme_widget_message_wrap js-widget_message_wrap">
    <div class="tgme_widget_message js-widget_message" data-post="alerts/102">
      <a class="tgme_widget_message_photo_wrap" style="width:100%;background-image:url('https://cdn.example/photo.jpg')"></a>
      <div class="tgme_widget_message_footer">
        <time datetime="2024-01-01T10:01:00+00:00">10:01</time>
      </div>
    </div>
  </div>

  <div class="tgme_widget_message_wrap js-widget_message_wrap">
    <div class="tgme_widget_message js-widget_message" data-post="alerts/103">
      <a class="tgme_widget_message_video_player">
        <i class="tgme_widget_message_video_thumb" style="background-image:url('https://cdn.example/thumb.jpg')"></i>
        <video src="https://cdn.example/video.mp4" class="tgme_widget_message_video"></video>
      </a>
      <div class="tgme_widget_message_text">clip</div>
      <time datetime="2024-01-01T10:02:00+00:00">10:02</time>
    </div>
  </div>

  <div class="tgme_widget_message_wrap js-widget_message_wrap">
    <div class="tgme_widget_message js-widget_message" data-post="alerts/104">
      <a class="tgme_widget_message_video_player">
        <i class="tgme_widget_message_video_thumb" style="background-image:url(https://cdn.example/big.jpg)"></i>
      </a>
      <time datetime="2024-01-01T10:03:00+00:00">10:03</time>
    </div>
  </div>

  <div class="tgme_widget_message_wrap js-widget_message_wrap">
    <div class="tgme_widget_message js-widget_message">
      <div class="tgme_widget_message_text">service message without id</div>
      <time datetime="2024-01-01T10:04:00+00:00">10:04</time>
    </div>
  </div>

  <div class="tgme_widget_message_wrap js-widget_message_wrap">
    <div class="tgme_widget_message js-widget_message" data-post="alerts/105">
      <div class="tgme_widget_message_text">no timestamp</div>
    </div>
  </div>

  <div class="tgme_widget_message_wrap js-widget_message_wrap">
    <div class="tgme_widget_message js-widget_message" data-post="alerts/106">
      <div class="tgme_widget_message_sticker_wrap"></div>
      <time datetime="2024-01-01T10:05:00+00:00">10:05</time>
    </div>
  </div>

  <div class="tgme_widget_message_wrap js-widget_message_wrap">
    <div class="tgme_widget_message js-widget_message" data-post="alerts/abc">
      <div class="tgme_widget_message_text">bad id</div>
      <time datetime="2024-01-01T10:06:00+00:00">10:06</time>
    </div>
  </div>

</section>
</body></html>
"""


def _by_id():
    return {item.source_item_id: item for item in parse_page(PAGE)}


def test_only_valid_blocks_are_extracted() -> None:
    assert [item.source_item_id for item in parse_page(PAGE)] == [101, 102, 103, 104]


def test_reply_quote_is_excluded_and_line_breaks_kept() -> None:
    item = _by_id()[101]
    assert item.text == "First line\nSecond line"
    assert "quoted" not in item.text
    assert "Someone" not in item.text
    assert item.sender == "Admin"
    assert item.date == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert item.media_url is None


def test_photo_only_block_is_kept() -> None:
    item = _by_id()[102]
    assert item.text == ""
    assert item.media_url == "https://cdn.example/photo.jpg"
    assert item.media_type == "photo"
    assert item.sender is None


def test_video_prefers_direct_source() -> None:
    item = _by_id()[103]
    assert item.media_url == "https://cdn.example/video.mp4"
    assert item.media_type == "video"
    assert item.text == "clip"


def test_video_falls_back_to_preview_image() -> None:
    item = _by_id()[104]
    assert item.media_url == "https://cdn.example/big.jpg"
    assert item.media_type == "video"


def test_empty_channel_page_yields_no_items() -> None:
    html = '<section class="tgme_channel_history js-message_history"></section>'
    assert parse_page(html) == []


def test_template_drift_raises_parse_error() -> None:
    with pytest.raises(ParseError):
        parse_page("<html><body><div class='tgme_page'>Preview unavailable</div></body></html>")


def test_fetch_builds_url_and_parses(monkeypatch) -> None:
    fetcher = TelegramWebFetcher(FetcherConfig(base_url="https://t.me/s/"))
    requested = []

    def fake_download(url: str) -> str:
        requested.append(url)
        return PAGE

    monkeypatch.setattr(fetcher, "_download", fake_download)
    items = fetcher.fetch("alerts")
    assert requested == ["https://t.me/s/alerts"]
    assert len(items) == 4


def test_network_failure_raises_fetch_error(monkeypatch) -> None:
    def fake_urlopen(request, timeout):
        assert request.get_header("User-agent")
        assert timeout == 2.5
        raise urllib.error.URLError("timed out")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    fetcher = TelegramWebFetcher(FetcherConfig(timeout_seconds=2.5))
    with pytest.raises(FetchError):
        fetcher.fetch("alerts")


class _Response:
    def __init__(self, charset: str = "utf-8", body: bytes = b"", error: Optional[Exception] = None) -> None:
        self.headers = Message()
        self.headers["Content-Type"] = f"text/html; charset={charset}"
        self._body = body
        self._error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def read(self) -> bytes:
        if self._error is not None:
            raise self._error
        return self._body


@pytest.mark.parametrize(
    "response",
    [
        _Response(error=http.client.IncompleteRead(b"<div")),
        _Response(error=http.client.RemoteDisconnected("closed")),
        _Response(error=ConnectionResetError("reset by peer")),
        _Response(charset="x-unknown-charset", body=b"<html></html>"),
    ],
    ids=["truncated-body", "remote-disconnected", "connection-reset", "unknown-charset"],
)
def test_broken_response_raises_fetch_error(monkeypatch, response) -> None:
    monkeypatch.setattr("urllib.request.urlopen", lambda request, timeout: response)
    with pytest.raises(FetchError):
        TelegramWebFetcher().fetch("alerts")
