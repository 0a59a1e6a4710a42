"""Live ranking projection over a store's change feed.

The engine attaches to the store when its first observer registers,
recomputes the projection once per snapshot the store delivers and hands the
result to every observer in registration order. Snapshot handling never
awaits, so a projection is fully delivered before the next one starts.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable

from ranking.core.projection import EMPTY, Projection, build
from ranking.core.records import EntryRecord
from ranking.storage.base import StoreAdapter, Subscription

logger = logging.getLogger(__name__)

Observer = Callable[[Projection], None]


class EngineState(enum.Enum):
    DETACHED = "detached"
    SUBSCRIBING = "subscribing"
    LIVE = "live"
    ERRORED = "errored"


class AggregationEngine:
    def __init__(self, store: StoreAdapter):
        self.store = store
        self._observers: list[Observer] = []
        self._projection: Projection = EMPTY
        self._state = EngineState.DETACHED
        self._sub: Subscription | None = None
        self.recomputations = 0

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def projection(self) -> Projection:
        return self._projection

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns an idempotent unsubscribe callable."""
        if observer not in self._observers:
            self._observers.append(observer)

        if self._state == EngineState.DETACHED:
            self._attach()
        elif self._state == EngineState.LIVE:
            self._deliver_one(observer, self._projection)
        elif self._state == EngineState.ERRORED:
            self._deliver_one(observer, EMPTY)
        # SUBSCRIBING: the pending first snapshot reaches this observer too.

        def unsubscribe() -> None:
            self._remove(observer)

        return unsubscribe

    def restart(self) -> None:
        """Re-attach after a failed subscription. Never called automatically."""
        if self._state != EngineState.ERRORED:
            return
        if self._observers:
            self._attach()
        else:
            self._state = EngineState.DETACHED

    def close(self) -> None:
        self._observers.clear()
        self._detach()

    def _attach(self) -> None:
        self._state = EngineState.SUBSCRIBING
        # Local stores deliver the first snapshot before subscribe() returns.
        try:
            sub = self.store.subscribe(self._on_snapshot, self._on_error)
        except Exception as e:
            self._on_error(e)
            return
        if self._state == EngineState.DETACHED:
            # Every observer left during the first delivery.
            sub.close()
        elif sub.active:
            self._sub = sub

    def _detach(self) -> None:
        sub, self._sub = self._sub, None
        if sub:
            sub.close()
        self._projection = EMPTY
        self._state = EngineState.DETACHED

    def _remove(self, observer: Observer) -> None:
        if observer not in self._observers:
            return
        self._observers.remove(observer)
        if not self._observers and self._state != EngineState.DETACHED:
            self._detach()

    def _on_snapshot(self, records: list[EntryRecord]) -> None:
        projection = build(records)
        self.recomputations += 1
        self._projection = projection
        self._state = EngineState.LIVE
        self._fan_out(projection)

    def _on_error(self, exc: Exception) -> None:
        logger.error("ranking subscription failed: %s", exc)
        self._sub = None
        self._projection = EMPTY
        self._state = EngineState.ERRORED
        self._fan_out(EMPTY)

    def _fan_out(self, projection: Projection) -> None:
        # Observers added during delivery wait for the next snapshot.
        for observer in list(self._observers):
            self._deliver_one(observer, projection)

    def _deliver_one(self, observer: Observer, projection: Projection) -> None:
        try:
            observer(projection)
        except Exception:
            logger.exception("ranking observer %r failed", observer)
