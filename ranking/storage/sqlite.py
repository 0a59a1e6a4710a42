"""SQLite key/value persistence for the raw record collection.

The whole collection lives as one JSON array under a single storage key, so
every write is a read-modify-write inside one IMMEDIATE transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Iterable, Mapping

from ranking.core.records import EntryRecord, parse_collection
from ranking.storage.base import (
    LocalNotifier,
    StoreAdapter,
    StoreUnavailable,
    Subscription,
    new_record_id,
    to_wire,
)

logger = logging.getLogger(__name__)


class SqliteStore(StoreAdapter):
    def __init__(self, path: str, key: str = "ranking"):
        self.path = path
        self.key = key
        self.conn: sqlite3.Connection | None = None
        self._notifier = LocalNotifier()

    def init(self) -> None:
        self.conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL
            )
            """
        )

    async def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    @property
    def subscriber_count(self) -> int:
        return len(self._notifier)

    def _conn(self) -> sqlite3.Connection:
        if not self.conn:
            raise StoreUnavailable(f"sqlite store {self.path!r} is not open")
        return self.conn

    def _load(self, conn: sqlite3.Connection) -> list[Any]:
        row = conn.execute("SELECT value FROM kv WHERE key = ?", (self.key,)).fetchone()
        if not row:
            return []
        try:
            data = json.loads(row[0])
        except ValueError as e:
            logger.warning("failed to parse stored collection %r: %s", self.key, e)
            return []
        if not isinstance(data, list):
            logger.warning("stored collection %r is not a list; treating as empty", self.key)
            return []
        return data

    def _save(self, conn: sqlite3.Connection, items: list[Any]) -> None:
        conn.execute(
            """
            INSERT INTO kv (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (self.key, json.dumps(items, separators=(",", ":"))),
        )

    def _write(self, mutate) -> list[Any]:
        conn = self._conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            items = mutate(self._load(conn))
            self._save(conn, items)
            conn.execute("COMMIT")
        except (sqlite3.Error, TypeError, ValueError) as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreUnavailable(f"sqlite write failed: {e}") from e
        return items

    def _read(self) -> list[Any]:
        try:
            return self._load(self._conn())
        except sqlite3.Error as e:
            raise StoreUnavailable(f"sqlite read failed: {e}") from e

    async def append(self, record: EntryRecord | Mapping[str, Any]) -> str:
        item = to_wire(record)
        if not item.get("id"):
            item["id"] = new_record_id()
        items = self._write(lambda cur: [*cur, item])
        self._notifier.publish(parse_collection(items))
        return str(item["id"])

    async def read_all(self) -> list[EntryRecord]:
        return parse_collection(self._read())

    def subscribe(self, on_snapshot, on_error) -> Subscription:
        sub = self._notifier.add(on_snapshot, on_error)
        try:
            items = self._read()
        except StoreUnavailable as e:
            sub.fail(e)
            return sub
        sub.deliver(parse_collection(items))
        return sub

    async def replace_all(self, records: Iterable[EntryRecord | Mapping[str, Any]]) -> None:
        new_items = [to_wire(r) for r in records]
        items = self._write(lambda _cur: new_items)
        self._notifier.publish(parse_collection(items))

    def count(self) -> int:
        return len(self._read())
