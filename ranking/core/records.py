"""Entry records, parse-with-defaults and identity keys.

Wire shape (any subset):
  {"id": ..., "timestamp": ..., "name": ..., "score": ..., "prize": ...}
"""

from __future__ import annotations

import logging
import math
import types
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

logger = logging.getLogger(__name__)

ANONYMOUS = "Anonymous"

WIRE_FIELDS = ("id", "timestamp", "name", "score", "prize")


def normalize(name: Any) -> str:
    """Identity key for a display name: trimmed and lower-cased."""
    if name is None:
        return ANONYMOUS.lower()
    if not isinstance(name, str):
        name = str(name)
    key = name.strip().lower()
    return key or ANONYMOUS.lower()


def coerce_score(v: Any) -> int | float:
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, int):
        return v
    if isinstance(v, str):
        v = v.strip()
    try:
        f = float(v)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(f):
        return 0
    return int(f) if f.is_integer() else f


def _name(v: Any) -> str:
    if v is None:
        return ANONYMOUS
    if not isinstance(v, str):
        v = str(v)
    if not v.strip():
        return ANONYMOUS
    return v


@dataclass(frozen=True)
class EntryRecord:
    name: str = ANONYMOUS
    score: int | float = 0
    timestamp: Any = None
    record_id: str | None = None
    prize: Any = None
    # Unknown wire keys, passed through untouched.
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.extra, types.MappingProxyType):
            object.__setattr__(self, "extra", types.MappingProxyType(dict(self.extra)))

    @property
    def identity(self) -> str:
        return normalize(self.name)

    def with_id(self, record_id: str) -> "EntryRecord":
        return EntryRecord(
            name=self.name,
            score=self.score,
            timestamp=self.timestamp,
            record_id=record_id,
            prize=self.prize,
            extra=self.extra,
        )

    def with_timestamp(self, timestamp: Any) -> "EntryRecord":
        return EntryRecord(
            name=self.name,
            score=self.score,
            timestamp=timestamp,
            record_id=self.record_id,
            prize=self.prize,
            extra=self.extra,
        )

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        if self.record_id is not None:
            out["id"] = self.record_id
        if self.timestamp is not None:
            out["timestamp"] = self.timestamp
        out["name"] = self.name
        out["score"] = self.score
        if self.prize is not None:
            out["prize"] = self.prize
        return out


def parse_record(data: Mapping[str, Any] | EntryRecord) -> EntryRecord:
    """Build an EntryRecord from a wire mapping, filling every default here."""
    if isinstance(data, EntryRecord):
        return data
    rid = data.get("id")
    if rid is not None and not isinstance(rid, str):
        rid = str(rid)
    extra = {k: v for k, v in data.items() if k not in WIRE_FIELDS}
    return EntryRecord(
        name=_name(data.get("name")),
        score=coerce_score(data.get("score")),
        timestamp=data.get("timestamp"),
        record_id=rid or None,
        prize=data.get("prize"),
        extra=extra,
    )


def parse_collection(items: Iterable[Any]) -> list[EntryRecord]:
    """Parse a raw stored collection, skipping items that are not records at all."""
    out = []
    for item in items:
        if isinstance(item, EntryRecord):
            out.append(item)
        elif isinstance(item, Mapping):
            out.append(parse_record(item))
        else:
            logger.warning("skipping non-record item in collection: %r", item)
    return out
