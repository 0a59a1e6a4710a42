"""HTTP + WebSocket entrypoint for the shared ranking store.

Hosts the raw record collection for networked mode: writers append over HTTP,
readers receive full snapshots over the socket, and the service keeps its own
live ranking for `/ranking` and the `ranking` socket channel.
"""

from __future__ import annotations

import hmac
import json
import logging
import secrets
import time
import uuid
from typing import Any

from aiohttp import web

from ranking.core.config import RankingConfig
from ranking.core.engine import AggregationEngine
from ranking.log import setup_logging
from ranking.net import protocol
from ranking.net.ws import WsHub
from ranking.storage.base import StoreError
from ranking.storage.sqlite import SqliteStore

logger = logging.getLogger(__name__)


class RankingService:
    def __init__(self, config: RankingConfig):
        self.config = config
        self.server_id = str(uuid.uuid4())
        self.start_time = time.time()

        self.store = SqliteStore(self.config.sqlite_path, key=self.config.storage_key)
        self.engine = AggregationEngine(self.store)
        self.hub = WsHub(self)

        self.sessions: set[str] = set()
        self._unwatch = None

    async def start(self) -> None:
        self.store.init()
        # Keep the service's own projection live for /ranking.
        self._unwatch = self.engine.subscribe(lambda _projection: None)
        logger.info("ranking store open at %s (key=%s)", self.config.sqlite_path, self.config.storage_key)

    async def stop(self) -> None:
        await self.hub.close_all()
        if self._unwatch:
            self._unwatch()
            self._unwatch = None
        self.engine.close()
        await self.store.close()

    def new_session(self) -> str:
        token = secrets.token_urlsafe(24)
        self.sessions.add(token)
        return token

    def session_ok(self, token: str | None) -> bool:
        if not self.config.require_session:
            return True
        return bool(token) and token in self.sessions

    def admin_ok(self, header: str | None) -> bool:
        expected = self.config.admin_token
        if not expected or not header:
            return False
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer":
            return False
        return hmac.compare_digest(token.strip(), expected)

    def version_payload(self) -> dict[str, Any]:
        return {
            "serverId": self.server_id,
            "serverVersion": self.config.server_version,
            "protocolVersion": self.config.protocol_version,
        }


def _cors_headers(config: RankingConfig, origin: str | None) -> dict[str, str]:
    if not origin:
        return {}
    if config.cors_allow_all:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    if origin in config.cors_allowed_origins:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    return {}


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        origin = request.headers.get("Origin")
        headers = {
            **_cors_headers(request.app["config"], origin),
            "Access-Control-Allow-Methods": "GET,POST,PUT,OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type,Authorization,X-Session",
            "Access-Control-Max-Age": "86400",
        }
        return web.Response(status=204, headers=headers)

    resp = await handler(request)

    # aiohttp finalizes WS headers during `prepare()`.
    if isinstance(resp, web.WebSocketResponse):
        return resp

    origin = request.headers.get("Origin")
    for k, v in _cors_headers(request.app["config"], origin).items():
        resp.headers[k] = v
    return resp


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(text=json.dumps({"error": message}), content_type="application/json")


async def _read_json(request: web.Request) -> Any:
    if not request.can_read_body:
        raise _bad_request("request body required")
    try:
        return await request.json()
    except ValueError:
        raise _bad_request("invalid json")


def create_app(config: RankingConfig) -> web.Application:
    app = web.Application(middlewares=[cors_middleware], client_max_size=config.max_msg_size)
    svc = RankingService(config)

    app["config"] = config
    app["svc"] = svc

    async def on_startup(_: web.Application):
        await svc.start()

    async def on_cleanup(_: web.Application):
        await svc.stop()

    async def on_shutdown(_: web.Application):
        await svc.hub.close_all()

    app.on_startup.append(on_startup)
    app.on_shutdown.append(on_shutdown)
    app.on_cleanup.append(on_cleanup)

    async def root(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "service": "ranking-store",
                **svc.version_payload(),
                "endpoints": {
                    "health": "/health",
                    "session": "/session",
                    "records": "/records",
                    "ranking": "/ranking",
                    "ws": "/ws",
                },
            }
        )

    async def health(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "uptimeSec": time.time() - svc.start_time,
                "records": svc.store.count(),
                "players": len(svc.engine.projection),
                "engineState": svc.engine.state.value,
                "sockets": len(svc.hub),
                **svc.version_payload(),
            }
        )

    async def session(_: web.Request):
        return web.json_response({"session": svc.new_session()})

    async def list_records(_: web.Request):
        records = await svc.store.read_all()
        return web.json_response({"records": [r.to_wire() for r in records]})

    async def append_record(request: web.Request):
        if not svc.session_ok(request.headers.get("X-Session")):
            return _error(401, "session required")
        body = await _read_json(request)
        if not isinstance(body, dict):
            return _error(400, "record must be an object")
        try:
            record_id = await svc.store.append(body)
        except StoreError as e:
            logger.error("append failed: %s", e)
            return _error(503, str(e))
        return web.json_response({"id": record_id}, status=201)

    async def replace_records(request: web.Request):
        if not svc.admin_ok(request.headers.get("Authorization")):
            return _error(403, "admin credentials required")
        body = await _read_json(request)
        try:
            items = protocol.parse_record_list(body)
        except protocol.ProtocolError as e:
            return _error(400, str(e))
        if not all(isinstance(i, dict) for i in items):
            return _error(400, "every record must be an object")
        try:
            await svc.store.replace_all(items)
        except StoreError as e:
            logger.error("replace failed: %s", e)
            return _error(503, str(e))
        logger.info("collection replaced with %d records", len(items))
        return web.json_response({"ok": True, "count": len(items)})

    async def ranking(_: web.Request):
        return web.json_response(
            {
                "state": svc.engine.state.value,
                **protocol.ranking_payload(svc.engine.projection),
            }
        )

    async def ws_handler(request: web.Request):
        return await svc.hub.handle(request)

    async def preflight(_: web.Request):
        return web.Response(status=204)

    app.router.add_get("/", root)
    app.router.add_get("/health", health)
    app.router.add_post("/session", session)
    app.router.add_get("/records", list_records)
    app.router.add_post("/records", append_record)
    app.router.add_put("/records", replace_records)
    app.router.add_get("/ranking", ranking)
    app.router.add_get("/ws", ws_handler)
    app.router.add_route("OPTIONS", "/{tail:.*}", preflight)

    return app


def main() -> None:
    config = RankingConfig.from_env()
    setup_logging(config.log_level)
    app = create_app(config)
    web.run_app(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
