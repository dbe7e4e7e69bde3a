"""In-process publish/subscribe channel for alert payloads.

Publishing never waits on consumers: each subscriber owns a bounded queue
drained by its own task, so a slow delivery only fills that subscriber's
queue and never stalls ingestion.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from core.models import AlertPayload

LOGGER = logging.getLogger(__name__)

AlertHandler = Callable[[AlertPayload], Awaitable[None]]


class Subscription:
    """One registered consumer and the task draining its queue."""

    def __init__(self, handler: AlertHandler, max_pending: int) -> None:
        self._handler = handler
        self.queue: asyncio.Queue[AlertPayload] = asyncio.Queue(maxsize=max_pending)
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._drain())

    def offer(self, payload: AlertPayload) -> bool:
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    async def _drain(self) -> None:
        while True:
            payload = await self.queue.get()
            try:
                await self._handler(payload)
            except Exception:
                LOGGER.exception("Alert handler failed for feed=%s", payload.feed_id)
            finally:
                self.queue.task_done()

    async def close(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class AlertBus:
    """Fire-and-forget fan-out of AlertPayload to registered subscribers."""

    def __init__(self, max_pending: int = 100) -> None:
        self._max_pending = max_pending
        self._subscriptions: List[Subscription] = []

    def subscribe(self, handler: AlertHandler) -> Subscription:
        """Register a consumer. Must be called from inside the running loop."""

        subscription = Subscription(handler, self._max_pending)
        subscription.start()
        self._subscriptions.append(subscription)
        return subscription

    def publish(self, payload: AlertPayload) -> None:
        """Hand the payload to every subscriber without waiting.

        With no subscribers the payload is dropped. A full subscriber queue
        drops the payload for that subscriber only.
        """

        for subscription in self._subscriptions:
            if not subscription.offer(payload):
                LOGGER.warning(
                    "Alert queue full, dropping %s item(s) for feed=%s",
                    len(payload.items),
                    payload.feed_id,
                )

    async def join(self) -> None:
        """Wait until every queued payload has been handled."""

        for subscription in self._subscriptions:
            await subscription.queue.join()

    async def close(self) -> None:
        for subscription in self._subscriptions:
            await subscription.close()
        self._subscriptions.clear()
