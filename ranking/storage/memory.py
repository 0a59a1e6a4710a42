"""In-memory runtime store."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from ranking.core.records import EntryRecord, parse_collection
from ranking.storage.base import LocalNotifier, StoreAdapter, Subscription, new_record_id, to_wire


class MemoryStore(StoreAdapter):
    def __init__(self, records: Iterable[EntryRecord | Mapping[str, Any]] = ()):
        self._items: list[Any] = [to_wire(r) for r in records]
        self._notifier = LocalNotifier()

    @property
    def subscriber_count(self) -> int:
        return len(self._notifier)

    def _snapshot(self) -> list[EntryRecord]:
        return parse_collection(self._items)

    async def append(self, record: EntryRecord | Mapping[str, Any]) -> str:
        item = to_wire(record)
        if not item.get("id"):
            item["id"] = new_record_id()
        self._items = [*self._items, item]
        self._notifier.publish(self._snapshot())
        return str(item["id"])

    async def read_all(self) -> list[EntryRecord]:
        return self._snapshot()

    def subscribe(self, on_snapshot, on_error) -> Subscription:
        sub = self._notifier.add(on_snapshot, on_error)
        sub.deliver(self._snapshot())
        return sub

    async def replace_all(self, records: Iterable[EntryRecord | Mapping[str, Any]]) -> None:
        # Swap the reference; readers never see a half-built list.
        self._items = [to_wire(r) for r in records]
        self._notifier.publish(self._snapshot())

    def fail_subscribers(self, exc: Exception) -> None:
        self._notifier.fail_all(exc)
