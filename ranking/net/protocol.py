"""Message schemas + validation.

Wire format:
  {"type": "subscribe", "data": {...}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable

from ranking.core.projection import Projection
from ranking.core.records import EntryRecord


class ProtocolError(Exception):
    pass


CHANNEL_RECORDS = "records"
CHANNEL_RANKING = "ranking"
CHANNELS = {CHANNEL_RECORDS, CHANNEL_RANKING}


def dumps(msg_type: str, data: dict[str, Any]) -> str:
    return json.dumps({"type": msg_type, "data": data}, separators=(",", ":"))


def loads(text: str) -> tuple[str, dict[str, Any]]:
    try:
        obj = json.loads(text)
    except ValueError as e:
        raise ProtocolError(f"invalid json: {e}")

    if not isinstance(obj, dict):
        raise ProtocolError("message must be object")
    t = obj.get("type")
    if not isinstance(t, str):
        raise ProtocolError("missing type")
    data = obj.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProtocolError("data must be object")
    return t, data


def _num(v: Any, *, default: float = 0.0) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def records_payload(records: Iterable[EntryRecord]) -> dict[str, Any]:
    return {"channel": CHANNEL_RECORDS, "records": [r.to_wire() for r in records]}


def ranking_payload(projection: Projection) -> dict[str, Any]:
    return {"channel": CHANNEL_RANKING, "ranking": [r.to_wire() for r in projection]}


def parse_record_list(data: Any) -> list[Any]:
    """Accept a bare list, {"records": [...]} or a keyed {id: record} object."""
    if isinstance(data, dict) and "records" in data:
        data = data["records"]
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        out = []
        for key, rec in data.items():
            if isinstance(rec, dict) and not rec.get("id"):
                rec = {**rec, "id": key}
            out.append(rec)
        return out
    raise ProtocolError("records must be a list or an object")


@dataclass
class Subscribe:
    channel: str

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Subscribe":
        ch = data.get("channel", CHANNEL_RANKING)
        if ch not in CHANNELS:
            raise ProtocolError(f"subscribe.channel must be one of {sorted(CHANNELS)}")
        return cls(channel=ch)


@dataclass
class Ping:
    t: float

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Ping":
        return cls(t=_num(data.get("t"), default=0.0))


VALID_C2S = {"subscribe", "unsubscribe", "ping"}
