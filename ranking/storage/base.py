"""Store adapter contract shared by the local and remote stores."""

from __future__ import annotations

import abc
import logging
import uuid
from typing import Any, Callable, Iterable, Mapping

from ranking.core.records import EntryRecord

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[EntryRecord]], None]
ErrorCallback = Callable[[Exception], None]


class StoreError(Exception):
    pass


class StoreUnavailable(StoreError):
    pass


class StoreRejected(StoreError):
    pass


def new_record_id() -> str:
    return uuid.uuid4().hex


def to_wire(record: EntryRecord | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(record, EntryRecord):
        return record.to_wire()
    return dict(record)


class Subscription:
    """Handle for one store subscription; `on_error` fires at most once."""

    def __init__(self, on_snapshot: SnapshotCallback, on_error: ErrorCallback, on_close: Callable[["Subscription"], None] | None = None):
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._on_close = on_close
        self.active = True

    def deliver(self, records: list[EntryRecord]) -> None:
        if self.active:
            self._on_snapshot(records)

    def fail(self, exc: Exception) -> None:
        if not self.active:
            return
        self.active = False
        if self._on_close:
            self._on_close(self)
        self._on_error(exc)

    def close(self) -> None:
        # Idempotent.
        if not self.active:
            return
        self.active = False
        if self._on_close:
            self._on_close(self)


class StoreAdapter(abc.ABC):
    @abc.abstractmethod
    async def append(self, record: EntryRecord | Mapping[str, Any]) -> str:
        """Persist one record and return its id."""

    @abc.abstractmethod
    async def read_all(self) -> list[EntryRecord]:
        """Point-in-time read of the whole collection."""

    @abc.abstractmethod
    def subscribe(self, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Subscription:
        """Deliver the full collection now and again after every change."""

    @abc.abstractmethod
    async def replace_all(self, records: Iterable[EntryRecord | Mapping[str, Any]]) -> None:
        """Atomically overwrite the whole collection."""

    async def authorize(self) -> None:
        return None

    async def close(self) -> None:
        return None


class LocalNotifier:
    """Synchronous snapshot fan-out for stores living in this process."""

    def __init__(self):
        self._subs: list[Subscription] = []

    def __len__(self) -> int:
        return len(self._subs)

    def add(self, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Subscription:
        sub = Subscription(on_snapshot, on_error, on_close=self._remove)
        self._subs.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subs:
            self._subs.remove(sub)

    def publish(self, records: list[EntryRecord]) -> None:
        for sub in list(self._subs):
            try:
                sub.deliver(list(records))
            except Exception:
                logger.exception("snapshot subscriber failed")

    def fail_all(self, exc: Exception) -> None:
        for sub in list(self._subs):
            sub.fail(exc)
