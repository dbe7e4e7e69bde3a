"""Core ingestion pipeline.

This module is integration-agnostic. It only relies on ports for storage,
subscriber lookup and rendering, and hands alerts to the AlertBus, enabling
other fetchers or delivery adapters without changes here.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from core.alert_bus import AlertBus
from core.config import IngestionConfig
from core.errors import PersistenceError
from core.models import AlertItem, AlertPayload, PersistedMessage, RawItem
from core.ports import (
    FeedRegistryPort,
    MessageStorePort,
    RendererPort,
    RuleStorePort,
    SubscriberDirectoryPort,
)
from core.rules_engine import (
    RuleSet,
    build_rule_set,
    clean_text,
    compile_boilerplate,
    normalize_for_match,
    passes_filter,
)

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionPipeline:
    """Orchestrates dedup, filtering, persistence, and alert publication."""

    def __init__(
        self,
        registry: FeedRegistryPort,
        messages: MessageStorePort,
        rules: RuleStorePort,
        subscribers: SubscriberDirectoryPort,
        bus: AlertBus,
        renderer: RendererPort,
        config: Optional[IngestionConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._registry = registry
        self._messages = messages
        self._rules = rules
        self._subscribers = subscribers
        self._bus = bus
        self._renderer = renderer
        self._boilerplate = compile_boilerplate((config or IngestionConfig()).boilerplate)
        self._clock = clock
        self._locks: dict[int, asyncio.Lock] = {}

    def _feed_lock(self, feed_id: int) -> asyncio.Lock:
        lock = self._locks.get(feed_id)
        if lock is None:
            lock = self._locks[feed_id] = asyncio.Lock()
        return lock

    async def _persist_new(
        self,
        feed_id: int,
        candidates: dict[int, RawItem],
        rule_set: RuleSet,
    ) -> Optional[tuple[list[PersistedMessage], list[PersistedMessage], datetime]]:
        """Dedup, classify and bulk-insert; None when nothing new was stored."""

        try:
            existing = await asyncio.to_thread(
                self._messages.existing_item_ids, feed_id, list(candidates)
            )
        except PersistenceError:
            LOGGER.exception("Dedup lookup failed, dropping batch for feed=%s", feed_id)
            return None

        created_at = self._clock()
        records: list[PersistedMessage] = []
        passed: list[PersistedMessage] = []
        for item_id, item in candidates.items():
            if item_id in existing:
                continue
            try:
                cleaned = clean_text(item.text, self._boilerplate)
                record = PersistedMessage(
                    feed_id=feed_id,
                    source_item_id=item_id,
                    text=cleaned,
                    date=item.date,
                    passed_filter=passes_filter(normalize_for_match(cleaned), rule_set),
                    media_url=item.media_url,
                    media_type=item.media_type,
                    created_at=created_at,
                )
            except (TypeError, ValueError, AttributeError):
                LOGGER.warning("Skipping malformed item %s for feed=%s", item_id, feed_id, exc_info=True)
                continue
            records.append(record)
            if record.passed_filter:
                passed.append(record)

        if not records:
            return None

        # Every new item is persisted, matched or not; the flag records the
        # filter outcome only, not whether anything was delivered.
        try:
            await asyncio.to_thread(self._messages.insert_messages, records)
        except PersistenceError:
            LOGGER.exception("Persisting %s item(s) failed for feed=%s", len(records), feed_id)
            return None
        return records, passed, created_at

    async def ingest(self, feed_id: int, items: Sequence[RawItem]) -> tuple[int, int]:
        """Process one fetched batch for a feed.

        Returns (persisted count, alerted count). Store calls run in worker
        threads so batches for different feeds can overlap.
        """

        if not items:
            return 0, 0

        # Everything the batch needs is loaded once; rules are never cached
        # across batches so edits apply on the next cycle.
        feed, recipients, rules = await asyncio.gather(
            asyncio.to_thread(self._registry.get_feed, feed_id),
            asyncio.to_thread(self._subscribers.list_recipients, feed_id),
            asyncio.to_thread(self._rules.list_rules),
        )
        if feed is None:
            LOGGER.warning("Dropping batch for unknown feed=%s", feed_id)
            return 0, 0
        rule_set = build_rule_set(rules)

        candidates: dict[int, RawItem] = {}
        for item in items:
            try:
                item_id = int(item.source_item_id)
            except (TypeError, ValueError):
                LOGGER.warning("Skipping item with bad id %r for feed=%s", item.source_item_id, feed_id)
                continue
            candidates.setdefault(item_id, item)

        # Batches for one feed are serialized from the dedup lookup through the
        # insert, so overlapping fetches of the same page cannot alert twice.
        async with self._feed_lock(feed_id):
            outcome = await self._persist_new(feed_id, candidates, rule_set)
        if outcome is None:
            return 0, 0
        records, passed, created_at = outcome

        if not passed or not recipients:
            LOGGER.debug(
                "feed=%s persisted=%s passed=%s recipients=%s",
                feed_id,
                len(records),
                len(passed),
                len(recipients),
            )
            return len(records), 0

        feed_name = feed.display_name
        alert_items = tuple(
            AlertItem(
                body=self._renderer.render(feed_name, record.text, created_at),
                source_item_id=record.source_item_id,
                media_url=record.media_url,
                media_type=record.media_type,
            )
            for record in passed
        )
        self._bus.publish(
            AlertPayload(
                feed_id=feed_id,
                feed_name=feed_name,
                items=alert_items,
                recipient_ids=frozenset(recipients),
            )
        )
        LOGGER.info(
            "Alert published for feed=%s: %s item(s) to %s recipient(s)",
            feed_id,
            len(alert_items),
            len(recipients),
        )
        return len(records), len(alert_items)
