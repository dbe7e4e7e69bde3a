"""SQLite storage adapter.

Implements the feed registry, message store, rule store and subscriber
directory ports using a simple SQLite database.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from core.errors import PersistenceError
from core.models import Feed, FilterRule, PersistedMessage


def _to_db_time(value: datetime) -> str:
    # Stored as UTC ISO strings so lexical order matches time order.
    return value.astimezone(timezone.utc).isoformat()


def _from_db_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _feed_from_row(row: sqlite3.Row) -> Feed:
    return Feed(
        id=int(row["id"]),
        source_locator=row["link"],
        poll_interval_ms=int(row["poll_interval_ms"]),
        last_polled_at=_from_db_time(row["last_polled_at"]),
        name=row["name"],
    )


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the core storage ports."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - feeds: polled channels with interval and last poll time
        - messages: append-only log of every ingested item
        - filter_rules: include/exclude phrases
        - subscribers / subscriptions: recipients per feed
        """

        with self._connect() as conn:
            # Fields:
            # - link: channel handle or t.me link, unique
            # - poll_interval_ms: minimum time between two polls
            # - last_polled_at: UTC ISO timestamp, only ever moves forward
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS feeds (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT,
                    link TEXT NOT NULL UNIQUE,
                    poll_interval_ms INTEGER NOT NULL DEFAULT 60000,
                    added_at TIMESTAMP NOT NULL,
                    last_polled_at TIMESTAMP
                )
                """
            )
            # (feed_id, source_item_id) identifies an item; it is never
            # ingested twice. passed_filter records the rule outcome.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    feed_id INTEGER NOT NULL REFERENCES feeds(id),
                    source_item_id INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    media_url TEXT,
                    media_type TEXT,
                    date TIMESTAMP NOT NULL,
                    passed_filter INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL,
                    UNIQUE (feed_id, source_item_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS filter_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    phrase TEXT NOT NULL UNIQUE,
                    is_exclusion INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            # silent is the do-not-disturb flag; banned recipients never
            # receive alerts either.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscribers (
                    recipient_id INTEGER PRIMARY KEY,
                    silent INTEGER NOT NULL DEFAULT 0,
                    banned INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    feed_id INTEGER NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
                    recipient_id INTEGER NOT NULL REFERENCES subscribers(recipient_id) ON DELETE CASCADE,
                    PRIMARY KEY (feed_id, recipient_id)
                )
                """
            )

    # Feed registry

    def list_feeds(self) -> list[Feed]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM feeds ORDER BY id").fetchall()
        return [_feed_from_row(row) for row in rows]

    def get_feed(self, feed_id: int) -> Optional[Feed]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,)).fetchone()
        return _feed_from_row(row) if row else None

    def add_feed(self, link: str, poll_interval_ms: int, name: Optional[str] = None) -> int:
        """Insert a feed and return its id."""

        added_at = _to_db_time(datetime.now(timezone.utc))
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    "INSERT INTO feeds (name, link, poll_interval_ms, added_at) VALUES (?, ?, ?, ?)",
                    (name, link, poll_interval_ms, added_at),
                )
                return int(cur.lastrowid)
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not add feed {link}: {e}") from e

    def mark_polled(self, feed_ids: Iterable[int], polled_at: datetime) -> None:
        """Set last_polled_at for all ids in one transaction, never moving it back."""

        ids = list(feed_ids)
        if not ids:
            return
        stamp = _to_db_time(polled_at)
        placeholders = ", ".join("?" for _ in ids)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"""
                    UPDATE feeds SET last_polled_at = ?
                    WHERE id IN ({placeholders})
                      AND (last_polled_at IS NULL OR last_polled_at <= ?)
                    """,
                    (stamp, *ids, stamp),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not update poll time: {e}") from e

    # Message store

    def existing_item_ids(self, feed_id: int, source_item_ids: Iterable[int]) -> set[int]:
        ids = list(source_item_ids)
        if not ids:
            return set()
        placeholders = ", ".join("?" for _ in ids)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT source_item_id FROM messages WHERE feed_id = ? AND source_item_id IN ({placeholders})",
                    (feed_id, *ids),
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Dedup lookup failed: {e}") from e
        return {int(row["source_item_id"]) for row in rows}

    def insert_messages(self, messages: Sequence[PersistedMessage]) -> int:
        """Bulk insert; rows whose (feed_id, source_item_id) exists are ignored."""

        now = datetime.now(timezone.utc)
        rows = [
            (
                message.feed_id,
                message.source_item_id,
                message.text,
                message.media_url,
                message.media_type,
                _to_db_time(message.date),
                int(message.passed_filter),
                _to_db_time(message.created_at or now),
            )
            for message in messages
        ]
        try:
            with self._connect() as conn:
                cur = conn.executemany(
                    """
                    INSERT OR IGNORE INTO messages (
                        feed_id,
                        source_item_id,
                        text,
                        media_url,
                        media_type,
                        date,
                        passed_filter,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                return cur.rowcount
        except sqlite3.Error as e:
            raise PersistenceError(f"Bulk insert of {len(rows)} message(s) failed: {e}") from e

    def list_messages(self, feed_id: int) -> list[PersistedMessage]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE feed_id = ? ORDER BY source_item_id",
                (feed_id,),
            ).fetchall()
        return [
            PersistedMessage(
                feed_id=int(row["feed_id"]),
                source_item_id=int(row["source_item_id"]),
                text=row["text"],
                date=datetime.fromisoformat(row["date"]),
                passed_filter=bool(row["passed_filter"]),
                media_url=row["media_url"],
                media_type=row["media_type"],
                created_at=_from_db_time(row["created_at"]),
            )
            for row in rows
        ]

    # Rule store

    def list_rules(self) -> list[FilterRule]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM filter_rules ORDER BY id").fetchall()
        return [
            FilterRule(phrase=row["phrase"], is_exclusion=bool(row["is_exclusion"]), id=int(row["id"]))
            for row in rows
        ]

    def add_rule(self, phrase: str, is_exclusion: bool) -> int:
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    "INSERT INTO filter_rules (phrase, is_exclusion) VALUES (?, ?)",
                    (phrase, int(is_exclusion)),
                )
                return int(cur.lastrowid)
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not add rule {phrase!r}: {e}") from e

    def delete_rule(self, rule_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM filter_rules WHERE id = ?", (rule_id,))
            return cur.rowcount > 0

    # Subscriber directory

    def subscribe(self, feed_id: int, recipient_id: int) -> None:
        try:
            with self._connect() as conn:
                conn.execute("INSERT OR IGNORE INTO subscribers (recipient_id) VALUES (?)", (recipient_id,))
                conn.execute(
                    "INSERT OR IGNORE INTO subscriptions (feed_id, recipient_id) VALUES (?, ?)",
                    (feed_id, recipient_id),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not subscribe {recipient_id} to feed {feed_id}: {e}") from e

    def set_silent(self, recipient_id: int, silent: bool) -> bool:
        """Toggle do-not-disturb; False when the recipient is unknown."""

        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE subscribers SET silent = ? WHERE recipient_id = ?",
                (int(silent), recipient_id),
            )
            return cur.rowcount > 0

    def set_banned(self, recipient_id: int, banned: bool) -> None:
        # A ban may precede any subscription, so the row is created on demand.
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO subscribers (recipient_id, banned) VALUES (?, ?)
                    ON CONFLICT(recipient_id) DO UPDATE SET banned = excluded.banned
                    """,
                    (recipient_id, int(banned)),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not update ban for {recipient_id}: {e}") from e

    def list_recipients(self, feed_id: int) -> list[int]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT s.recipient_id FROM subscriptions AS sub
                JOIN subscribers AS s ON s.recipient_id = sub.recipient_id
                WHERE sub.feed_id = ? AND s.silent = 0 AND s.banned = 0
                ORDER BY s.recipient_id
                """,
                (feed_id,),
            ).fetchall()
        return [int(row["recipient_id"]) for row in rows]
