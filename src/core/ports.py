"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, directory and delivery
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from core.models import Feed, FilterRule, PersistedMessage, RawItem


class FeedRegistryPort(Protocol):
    """Feeds with their polling interval and last-poll timestamp."""

    def list_feeds(self) -> list[Feed]:
        ...

    def get_feed(self, feed_id: int) -> Optional[Feed]:
        ...

    def mark_polled(self, feed_ids: Iterable[int], polled_at: datetime) -> None:
        """Update last-poll for all ids in one atomic write."""
        ...


class MessageStorePort(Protocol):
    """Append-and-query store of persisted items."""

    def existing_item_ids(self, feed_id: int, source_item_ids: Iterable[int]) -> set[int]:
        ...

    def insert_messages(self, messages: Sequence[PersistedMessage]) -> int:
        ...


class RuleStorePort(Protocol):
    def list_rules(self) -> list[FilterRule]:
        ...


class SubscriberDirectoryPort(Protocol):
    def list_recipients(self, feed_id: int) -> list[int]:
        """Eligible recipient ids for a feed (do-not-disturb excluded)."""
        ...


class FetcherPort(Protocol):
    def fetch(self, source_locator: str) -> list[RawItem]:
        ...


class RendererPort(Protocol):
    """Turns one cleaned item into a display-safe delivery body."""

    def render(self, feed_name: str, text: str, received_at: datetime) -> str:
        ...


class DeliverySinkPort(Protocol):
    """Outbound channel. Raises DeliveryError when a single send fails."""

    async def send(
        self,
        recipient_id: int,
        body: str,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> None:
        ...
