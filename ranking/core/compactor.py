"""Offline compaction of the raw record collection.

Compaction rewrites the store to one record per identity (the winning record
of the projection). Every non-winning raw record is discarded, so `apply`
must be an explicit choice; the default is a preview that leaves the store
untouched.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from ranking.core.projection import build, to_records
from ranking.core.records import EntryRecord
from ranking.storage.base import StoreAdapter

logger = logging.getLogger(__name__)


@dataclass
class CompactionResult:
    raw_count: int
    compacted_count: int
    records: list[EntryRecord] = field(default_factory=list)
    applied: bool = False

    def as_wire(self) -> dict[str, dict[str, Any]]:
        return {r.record_id: r.to_wire() for r in self.records}


def _fresh_id() -> str:
    return f"clean_{uuid.uuid4().hex}"


def compact_records(raw: list[EntryRecord]) -> list[EntryRecord]:
    """Winning records keyed by a unique id: the original one when usable."""
    out = []
    used: set[str] = set()
    for rec in to_records(build(raw)):
        rid = rec.record_id
        if not rid or rid in used:
            rid = _fresh_id()
            rec = rec.with_id(rid)
        used.add(rid)
        out.append(rec)
    return out


async def compact(store: StoreAdapter, apply: bool = False) -> CompactionResult:
    raw = await store.read_all()
    records = compact_records(raw)
    result = CompactionResult(raw_count=len(raw), compacted_count=len(records), records=records)
    logger.info("found %d raw records, %d unique players", result.raw_count, result.compacted_count)

    if apply:
        logger.info("replacing stored collection with %d compacted records", result.compacted_count)
        await store.replace_all(records)
        result.applied = True
    return result
