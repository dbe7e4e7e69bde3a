"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

MEDIA_PHOTO = "photo"
MEDIA_VIDEO = "video"


@dataclass(frozen=True)
class Feed:
    """A polled public channel as stored in the feed registry."""

    id: int
    source_locator: str
    poll_interval_ms: int
    last_polled_at: Optional[datetime] = None
    name: Optional[str] = None

    @property
    def handle(self) -> str:
        # Locators may be stored as full links (https://t.me/<handle>).
        return self.source_locator.rstrip("/").split("/")[-1].lstrip("@")

    @property
    def display_name(self) -> str:
        return self.name or self.source_locator or "Alert"

    def is_due(self, now: datetime) -> bool:
        if self.last_polled_at is None:
            return True
        return now - self.last_polled_at >= timedelta(milliseconds=self.poll_interval_ms)


@dataclass(frozen=True)
class RawItem:
    """One post extracted from a rendered feed page. Never persisted as-is."""

    source_item_id: int
    text: str
    date: datetime
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    sender: Optional[str] = None


@dataclass(frozen=True)
class PersistedMessage:
    """Append-only record of an ingested item, keyed by (feed_id, source_item_id)."""

    feed_id: int
    source_item_id: int
    text: str
    date: datetime
    passed_filter: bool
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class FilterRule:
    phrase: str
    is_exclusion: bool
    id: Optional[int] = None


@dataclass(frozen=True)
class AlertItem:
    """A rendered delivery item: display-safe body plus optional media."""

    body: str
    source_item_id: int
    media_url: Optional[str] = None
    media_type: Optional[str] = None


@dataclass(frozen=True)
class AlertPayload:
    """Batch of filter-passed items for one feed, in transit to delivery."""

    feed_id: int
    feed_name: str
    items: tuple[AlertItem, ...]
    recipient_ids: frozenset[int] = field(default_factory=frozenset)


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch job, posted from a worker unit to the coordinator."""

    feed_id: int
    handle: str
    items: tuple[RawItem, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class WorkerExit:
    """Posted by a worker unit when its thread terminates abnormally."""

    feed_id: int
    reason: str
