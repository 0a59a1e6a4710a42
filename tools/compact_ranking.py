"""Compact the shared ranking store to one best record per player.

Usage:
  python tools/compact_ranking.py --preview
  python tools/compact_ranking.py --apply --credentials serviceAccountKey.json
  python tools/compact_ranking.py --apply --local ranking.sqlite3

Remote mode reads {"url": ..., "token": ...} from the credentials file (the
URL may instead come from RANKING_REMOTE_URL). --apply OVERWRITES the stored
collection; every non-winning record is gone afterwards.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from ranking.core.compactor import compact
from ranking.log import setup_logging
from ranking.storage.base import StoreAdapter, StoreError
from ranking.storage.remote import RemoteStore
from ranking.storage.sqlite import SqliteStore

logger = logging.getLogger("ranking.tools.compact")


class CredentialsError(Exception):
    pass


def load_credentials(path: str) -> dict[str, str]:
    if not os.path.exists(path):
        raise CredentialsError(f"credentials file {path} is missing")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except ValueError as e:
        raise CredentialsError(f"credentials file {path} is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise CredentialsError(f"credentials file {path} must hold an object")
    url = data.get("url") or os.environ.get("RANKING_REMOTE_URL")
    token = data.get("token")
    if not url:
        raise CredentialsError("no store URL: set \"url\" in the credentials file or RANKING_REMOTE_URL")
    if not token:
        raise CredentialsError(f"credentials file {path} has no \"token\"")
    return {"url": str(url), "token": str(token)}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    mode = ap.add_mutually_exclusive_group()
    mode.add_argument("--preview", action="store_true", help="print the compacted data without writing (default)")
    mode.add_argument("--apply", action="store_true", help="overwrite the stored collection with the compacted data")
    ap.add_argument("--credentials", default="serviceAccountKey.json")
    ap.add_argument("--local", metavar="SQLITE_PATH", help="compact a local SQLite store instead of the service")
    ap.add_argument("--key", default="ranking", help="storage key of the local store")
    return ap


def open_store(args: argparse.Namespace) -> StoreAdapter:
    if args.local:
        store = SqliteStore(args.local, key=args.key)
        store.init()
        return store
    creds = load_credentials(args.credentials)
    return RemoteStore(creds["url"], admin_token=creds["token"])


async def run(store: StoreAdapter, apply: bool) -> int:
    try:
        result = await compact(store, apply=apply)
    finally:
        await store.close()

    print(f"Found {result.raw_count} raw records. Unique players (best): {result.compacted_count}")
    if result.applied:
        print("Applied compacted data; the stored collection was overwritten.")
    else:
        print("Preview of compacted data:")
        print(json.dumps(result.as_wire(), indent=2, ensure_ascii=False))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(os.environ.get("RANKING_LOG_LEVEL", "INFO"))

    try:
        store = open_store(args)
    except CredentialsError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(run(store, apply=args.apply))
    except StoreError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
