"""Client adapter for the shared ranking store service."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping

import aiohttp

from ranking.core.records import EntryRecord, parse_collection
from ranking.net import protocol
from ranking.storage.base import (
    StoreAdapter,
    StoreRejected,
    StoreUnavailable,
    Subscription,
    to_wire,
)

logger = logging.getLogger(__name__)


class RemoteStore(StoreAdapter):
    def __init__(
        self,
        base_url: str,
        admin_token: str | None = None,
        http: aiohttp.ClientSession | None = None,
        timeout_sec: float = 10.0,
        heartbeat_sec: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.admin_token = admin_token
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self.heartbeat = heartbeat_sec
        self.session_token: str | None = None
        self._http = http
        self._owns_http = http is None
        self._tasks: dict[Subscription, asyncio.Task] = {}

    def _client(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_http = True
        return self._http

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._client().request(method, url, **kwargs) as resp:
                if resp.status in (401, 403):
                    raise StoreRejected(f"{method} {path}: {resp.status} {await resp.text()}")
                if resp.status >= 400:
                    raise StoreUnavailable(f"{method} {path}: {resp.status} {await resp.text()}")
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StoreUnavailable(f"{method} {path}: {e}") from e

    async def authorize(self) -> None:
        data = await self._request("POST", "/session")
        token = data.get("session") if isinstance(data, dict) else None
        if not token:
            raise StoreRejected("service returned no session")
        self.session_token = token

    async def append(self, record: EntryRecord | Mapping[str, Any]) -> str:
        headers = {"X-Session": self.session_token} if self.session_token else {}
        data = await self._request("POST", "/records", json=to_wire(record), headers=headers)
        record_id = data.get("id") if isinstance(data, dict) else None
        if not record_id:
            raise StoreUnavailable("service returned no record id")
        return str(record_id)

    async def read_all(self) -> list[EntryRecord]:
        data = await self._request("GET", "/records")
        try:
            return parse_collection(protocol.parse_record_list(data))
        except protocol.ProtocolError as e:
            raise StoreUnavailable(f"bad /records payload: {e}") from e

    async def replace_all(self, records: Iterable[EntryRecord | Mapping[str, Any]]) -> None:
        if not self.admin_token:
            raise StoreRejected("replace_all requires an admin token")
        body = {"records": [to_wire(r) for r in records]}
        headers = {"Authorization": f"Bearer {self.admin_token}"}
        await self._request("PUT", "/records", json=body, headers=headers)

    def subscribe(self, on_snapshot, on_error) -> Subscription:
        sub = Subscription(on_snapshot, on_error, on_close=self._stop)
        self._tasks[sub] = asyncio.get_running_loop().create_task(self._listen(sub))
        return sub

    def _stop(self, sub: Subscription) -> None:
        task = self._tasks.get(sub)
        if task and task is not asyncio.current_task():
            task.cancel()

    async def _listen(self, sub: Subscription) -> None:
        try:
            await self._read_feed(sub)
        finally:
            self._tasks.pop(sub, None)

    async def _read_feed(self, sub: Subscription) -> None:
        url = f"{self.base_url}/ws"
        try:
            async with self._client().ws_connect(url, heartbeat=self.heartbeat) as ws:
                await ws.send_str(protocol.dumps("subscribe", {"channel": protocol.CHANNEL_RECORDS}))
                async for msg in ws:
                    if msg.type != aiohttp.WSMsgType.TEXT:
                        if msg.type == aiohttp.WSMsgType.ERROR:
                            break
                        continue
                    self._on_message(sub, msg.data)
                    if not sub.active:
                        return
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            sub.fail(StoreUnavailable(f"subscription to {url} failed: {e}"))
            return
        sub.fail(StoreUnavailable(f"subscription to {url} closed"))

    def _on_message(self, sub: Subscription, text: str) -> None:
        try:
            msg_type, data = protocol.loads(text)
        except protocol.ProtocolError as e:
            logger.warning("ignoring bad message from store service: %s", e)
            return
        if msg_type == "snapshot" and data.get("channel") == protocol.CHANNEL_RECORDS:
            try:
                items = protocol.parse_record_list(data)
            except protocol.ProtocolError as e:
                logger.warning("ignoring bad snapshot: %s", e)
                return
            try:
                sub.deliver(parse_collection(items))
            except Exception:
                logger.exception("snapshot subscriber failed")
        elif msg_type == "error" and data.get("channel") == protocol.CHANNEL_RECORDS:
            sub.fail(StoreRejected(str(data.get("message", "subscription rejected"))))

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        for sub in list(self._tasks):
            sub.close()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None
