"""One ranking feed over either store: submit, listen, read raw."""

from __future__ import annotations

from typing import Any, Callable, Mapping

from ranking.core.config import RankingConfig
from ranking.core.engine import AggregationEngine, Observer
from ranking.core.gateway import SubmissionGateway
from ranking.core.records import EntryRecord
from ranking.storage.base import StoreAdapter
from ranking.storage.remote import RemoteStore
from ranking.storage.sqlite import SqliteStore


class RankingFeed:
    def __init__(self, store: StoreAdapter, authorize: bool = False, auth_timeout: float = 5.0):
        self.store = store
        self.engine = AggregationEngine(store)
        self.gateway = SubmissionGateway(
            store,
            authorizer=store.authorize if authorize else None,
            auth_timeout=auth_timeout,
        )

    @classmethod
    def local(cls, config: RankingConfig) -> "RankingFeed":
        store = SqliteStore(config.sqlite_path, key=config.storage_key)
        store.init()
        return cls(store)

    @classmethod
    def remote(cls, config: RankingConfig) -> "RankingFeed":
        if not config.remote_url:
            raise ValueError("remote_url is required for networked mode")
        store = RemoteStore(
            config.remote_url,
            admin_token=config.admin_token,
            heartbeat_sec=config.ws_heartbeat_sec,
        )
        return cls(store, authorize=True, auth_timeout=config.auth_timeout_sec)

    async def add_player(self, entry: EntryRecord | Mapping[str, Any]) -> str:
        return await self.gateway.submit(entry)

    def listen(self, observer: Observer) -> Callable[[], None]:
        return self.engine.subscribe(observer)

    async def raw(self) -> list[EntryRecord]:
        return await self.store.read_all()

    async def close(self) -> None:
        self.engine.close()
        await self.store.close()
