"""Best-per-player ranking built from the raw record collection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from ranking.core.records import EntryRecord, parse_collection


@dataclass(frozen=True)
class PlayerRanking:
    identity: str
    display_name: str
    best_score: int | float
    best_record_id: str | None
    best_prize: Any
    best_submitted_at: Any
    submission_count: int
    best_record: EntryRecord

    def to_wire(self) -> dict[str, Any]:
        return {
            "name": self.display_name,
            "score": self.best_score,
            "id": self.best_record_id,
            "prize": self.best_prize,
            "timestamp": self.best_submitted_at,
            "submissions": self.submission_count,
        }


Projection = tuple[PlayerRanking, ...]

EMPTY: Projection = ()


class _Acc:
    __slots__ = ("best", "count")

    def __init__(self, best: EntryRecord):
        self.best = best
        self.count = 1


def build(records: Iterable[EntryRecord | dict[str, Any]]) -> Projection:
    """Reduce a raw collection to one entry per identity, best score first.

    A later record replaces the incumbent only with a strictly greater score,
    so exact ties keep the first record seen. Equal best scores across
    players keep first-seen order.
    """
    accs: dict[str, _Acc] = {}
    for rec in parse_collection(records):
        key = rec.identity
        acc = accs.get(key)
        if acc is None:
            accs[key] = _Acc(rec)
            continue
        acc.count += 1
        if rec.score > acc.best.score:
            acc.best = rec

    out = [
        PlayerRanking(
            identity=key,
            display_name=acc.best.name,
            best_score=acc.best.score,
            best_record_id=acc.best.record_id,
            best_prize=acc.best.prize,
            best_submitted_at=acc.best.timestamp,
            submission_count=acc.count,
            best_record=acc.best,
        )
        for key, acc in accs.items()
    ]
    out.sort(key=lambda r: r.best_score, reverse=True)
    return tuple(out)


def to_records(projection: Projection) -> list[EntryRecord]:
    """The winning raw record of each ranking entry, in ranking order."""
    return [r.best_record for r in projection]
