from __future__ import annotations

import asyncio
import io
import json
import urllib.error
from typing import Optional

import pytest

from adapters.delivery import AlertDelivery
from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_notifier import TelethonNotifier
from core.errors import DeliveryError
from core.models import AlertItem, AlertPayload


class FakeSink:
    def __init__(self, unreachable: set[int], broken: set[int] = frozenset()) -> None:
        self.unreachable = unreachable
        self.broken = broken
        self.sent: list[tuple[int, str, Optional[str], Optional[str]]] = []

    async def send(self, recipient_id: int, body: str, media_url=None, media_type=None) -> None:
        await asyncio.sleep(0)
        if recipient_id in self.unreachable:
            raise DeliveryError(recipient_id, "bot was blocked by the user")
        if recipient_id in self.broken:
            raise RuntimeError("unexpected")
        self.sent.append((recipient_id, body, media_url, media_type))


def _payload() -> AlertPayload:
    return AlertPayload(
        feed_id=1,
        feed_name="Alerts",
        items=(
            AlertItem(body="one", source_item_id=1),
            AlertItem(body="two", source_item_id=2, media_url="https://cdn/v.mp4", media_type="video"),
        ),
        recipient_ids=frozenset({10, 20, 30}),
    )


def test_fan_out_reaches_every_recipient_for_every_item() -> None:
    sink = FakeSink(unreachable=set())
    sent, failed = asyncio.run(AlertDelivery(sink).handle(_payload()))
    assert (sent, failed) == (6, 0)
    assert {(r, b) for r, b, _, _ in sink.sent} == {(r, b) for r in (10, 20, 30) for b in ("one", "two")}
    assert ("https://cdn/v.mp4", "video") in {(u, t) for _, _, u, t in sink.sent}


def test_failed_sends_do_not_affect_siblings() -> None:
    sink = FakeSink(unreachable={20}, broken={30})
    sent, failed = asyncio.run(AlertDelivery(sink).handle(_payload()))
    assert (sent, failed) == (2, 4)
    assert {r for r, _, _, _ in sink.sent} == {10}


def test_payload_without_recipients_sends_nothing() -> None:
    payload = AlertPayload(feed_id=1, feed_name="x", items=(AlertItem(body="a", source_item_id=1),))
    assert asyncio.run(AlertDelivery(FakeSink(set())).handle(payload)) == (0, 0)


def test_bot_notifier_picks_method_by_media_type() -> None:
    notifier = TelegramBotNotifier("token")
    assert notifier._build_call(1, "b", None, None)[0] == "sendMessage"
    method, payload = notifier._build_call(1, "b", "https://cdn/p.jpg", "photo")
    assert method == "sendPhoto"
    assert payload["caption"] == "b"
    assert payload["parse_mode"] == "MarkdownV2"
    assert notifier._build_call(1, "b", "https://cdn/v.mp4", "video")[0] == "sendVideo"


def test_bot_notifier_posts_json(monkeypatch) -> None:
    calls = []

    class _Response:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    def fake_urlopen(request, timeout):
        calls.append((request.full_url, json.loads(request.data)))
        return _Response()

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    asyncio.run(TelegramBotNotifier("T0K").send(42, "hello"))

    url, body = calls[0]
    assert url == "https://api.telegram.org/botT0K/sendMessage"
    assert body["chat_id"] == 42
    assert body["text"] == "hello"


def test_bot_notifier_wraps_http_errors(monkeypatch) -> None:
    def fake_urlopen(request, timeout):
        raise urllib.error.HTTPError(
            request.full_url, 403, "Forbidden", hdrs=None, fp=io.BytesIO(b'{"ok":false}')
        )

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    with pytest.raises(DeliveryError) as excinfo:
        asyncio.run(TelegramBotNotifier("token").send(7, "hello"))
    assert excinfo.value.recipient_id == 7
    assert "403" in str(excinfo.value)


class DummyClient:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages: list[tuple] = []
        self.files: list[tuple] = []

    async def send_message(self, entity, message, parse_mode=None, link_preview=True):
        if self.fail:
            raise ValueError("Could not find the input entity")
        self.messages.append((entity, message, parse_mode, link_preview))

    async def send_file(self, entity, file, caption=None, parse_mode=None, supports_streaming=False):
        self.files.append((entity, file, caption, parse_mode, supports_streaming))


def test_telethon_notifier_sends_text_and_media() -> None:
    client = DummyClient()
    notifier = TelethonNotifier(client, mode="html")

    asyncio.run(notifier.send(5, "<b>hi</b>"))
    asyncio.run(notifier.send(5, "clip", "https://cdn/v.mp4", "video"))

    assert client.messages == [(5, "<b>hi</b>", "html", False)]
    assert client.files == [(5, "https://cdn/v.mp4", "clip", "html", True)]


def test_telethon_notifier_wraps_unknown_recipient() -> None:
    notifier = TelethonNotifier(DummyClient(fail=True))
    with pytest.raises(DeliveryError):
        asyncio.run(notifier.send(9, "hello"))


def test_telethon_notifier_rejects_markdown_v2() -> None:
    with pytest.raises(ValueError):
        TelethonNotifier(DummyClient(), mode="markdown_v2")
