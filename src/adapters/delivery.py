"""Alert delivery: fans every payload item out to every recipient."""

from __future__ import annotations

import asyncio
import logging

from core.errors import DeliveryError
from core.models import AlertItem, AlertPayload
from core.ports import DeliverySinkPort

LOGGER = logging.getLogger(__name__)


class AlertDelivery:
    """AlertBus subscriber that dispatches through a delivery sink.

    Sends are concurrent and best-effort: a failure is logged and never
    retried, and it does not affect sibling sends.
    """

    def __init__(self, sink: DeliverySinkPort) -> None:
        self._sink = sink

    async def _send_one(self, recipient_id: int, item: AlertItem) -> bool:
        try:
            await self._sink.send(recipient_id, item.body, item.media_url, item.media_type)
        except DeliveryError as e:
            LOGGER.warning("Delivery failed: %s", e)
            return False
        except Exception:
            LOGGER.exception("Unexpected delivery failure for recipient %s", recipient_id)
            return False
        return True

    async def handle(self, payload: AlertPayload) -> tuple[int, int]:
        """Deliver a payload; returns (sent, failed)."""

        sends = [
            self._send_one(recipient_id, item)
            for item in payload.items
            for recipient_id in payload.recipient_ids
        ]
        if not sends:
            return 0, 0
        results = await asyncio.gather(*sends)
        sent = sum(1 for ok in results if ok)
        failed = len(results) - sent
        LOGGER.info(
            "Delivered feed=%s (%s): %s sent, %s failed",
            payload.feed_id,
            payload.feed_name,
            sent,
            failed,
        )
        return sent, failed
