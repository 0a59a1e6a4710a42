"""WebSocket handlers: push full snapshots to subscribed sockets."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

from aiohttp import WSMsgType, web

from ranking.net import protocol

logger = logging.getLogger(__name__)

# Messages buffered per socket; snapshots carry full state, so the oldest can go.
OUTBOX_LIMIT = 32


@dataclass
class Connection:
    conn_id: str
    ws: web.WebSocketResponse
    created_at: float

    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=OUTBOX_LIMIT))
    channels: dict[str, Callable[[], None]] = field(default_factory=dict)
    sender: asyncio.Task | None = None


class WsHub:
    def __init__(self, svc):
        self.svc = svc
        self._conns: dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._conns)

    def _origin_allowed(self, origin: str | None) -> bool:
        cfg = self.svc.config
        if cfg.cors_allow_all:
            return True
        if not origin:
            return False
        return origin in cfg.cors_allowed_origins

    async def handle(self, request: web.Request) -> web.StreamResponse:
        if not self._origin_allowed(request.headers.get("Origin")):
            raise web.HTTPForbidden(text="origin not allowed")

        cfg = self.svc.config
        ws = web.WebSocketResponse(heartbeat=cfg.ws_heartbeat_sec, max_msg_size=cfg.max_msg_size)
        await ws.prepare(request)

        conn = Connection(conn_id=uuid.uuid4().hex, ws=ws, created_at=time.time())
        conn.sender = asyncio.create_task(self._send_loop(conn))
        self._conns[conn.conn_id] = conn
        logger.debug("socket %s connected", conn.conn_id)

        self._push(conn, "info", {"server": self.svc.version_payload()})

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self._on_text(conn, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    break
        finally:
            await self._disconnect(conn)
        return ws

    def _push(self, conn: Connection, msg_type: str, data: dict) -> None:
        if conn.outbox.full():
            conn.outbox.get_nowait()
            logger.warning("socket %s is not keeping up, dropped oldest message", conn.conn_id)
        conn.outbox.put_nowait(protocol.dumps(msg_type, data))

    async def _send_loop(self, conn: Connection) -> None:
        # One writer per socket keeps snapshots in delivery order.
        while True:
            text = await conn.outbox.get()
            try:
                await conn.ws.send_str(text)
            except (ConnectionResetError, RuntimeError):
                return

    def _on_text(self, conn: Connection, text: str) -> None:
        try:
            msg_type, data = protocol.loads(text)
        except protocol.ProtocolError as e:
            self._push(conn, "error", {"message": str(e)})
            return

        if msg_type not in protocol.VALID_C2S:
            self._push(conn, "error", {"message": "invalid type"})
            return

        if msg_type == "ping":
            p = protocol.Ping.parse(data)
            self._push(conn, "pong", {"t": p.t, "serverTime": time.time()})
            return

        try:
            sub = protocol.Subscribe.parse(data)
        except protocol.ProtocolError as e:
            self._push(conn, "error", {"message": str(e)})
            return

        if msg_type == "unsubscribe":
            stop = conn.channels.pop(sub.channel, None)
            if stop:
                stop()
            return

        if sub.channel in conn.channels:
            return
        if sub.channel == protocol.CHANNEL_RECORDS:
            conn.channels[sub.channel] = self._subscribe_records(conn)
        else:
            conn.channels[sub.channel] = self._subscribe_ranking(conn)

    def _subscribe_records(self, conn: Connection) -> Callable[[], None]:
        def on_snapshot(records):
            self._push(conn, "snapshot", protocol.records_payload(records))

        def on_error(exc):
            self._push(conn, "error", {"channel": protocol.CHANNEL_RECORDS, "message": str(exc)})

        handle = self.svc.store.subscribe(on_snapshot, on_error)
        return handle.close

    def _subscribe_ranking(self, conn: Connection) -> Callable[[], None]:
        def on_projection(projection):
            self._push(conn, "snapshot", protocol.ranking_payload(projection))

        return self.svc.engine.subscribe(on_projection)

    async def _disconnect(self, conn: Connection) -> None:
        # Idempotent.
        if conn.conn_id not in self._conns:
            return
        self._conns.pop(conn.conn_id, None)
        logger.debug("socket %s disconnected", conn.conn_id)
        for stop in conn.channels.values():
            stop()
        conn.channels.clear()
        if conn.sender:
            conn.sender.cancel()
            try:
                await conn.sender
            except asyncio.CancelledError:
                pass
        if not conn.ws.closed:
            await conn.ws.close()

    async def close_all(self) -> None:
        for c in list(self._conns.values()):
            await self._disconnect(c)
