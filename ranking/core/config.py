"""Service, storage and client settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass
class RankingConfig:
    # Versions
    server_version: str = "0.1.0"
    protocol_version: int = 1

    # Network
    host: str = "0.0.0.0"
    port: int = 8766
    cors_allow_all: bool = True
    cors_allowed_origins: list[str] = field(default_factory=list)
    ws_heartbeat_sec: float = 10.0
    max_msg_size: int = 4_000_000

    # Persistence (local key/value slot)
    sqlite_path: str = "ranking.sqlite3"
    storage_key: str = "ranking"

    # Write authorization
    require_session: bool = False
    admin_token: str | None = None
    auth_timeout_sec: float = 5.0

    # Networked mode client
    remote_url: str | None = None

    log_level: str = "INFO"

    @staticmethod
    def _parse_bool(v: str | None, default: bool) -> bool:
        if v is None:
            return default
        return v.strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_float(v: str | None, default: float) -> float:
        if v is None:
            return default
        try:
            return float(v)
        except ValueError:
            return default

    @classmethod
    def from_env(cls) -> "RankingConfig":
        cfg = cls()
        cfg.host = os.environ.get("RANKING_HOST", cfg.host)
        if os.environ.get("RANKING_PORT"):
            try:
                cfg.port = int(os.environ["RANKING_PORT"])
            except ValueError:
                pass
        cfg.cors_allow_all = cls._parse_bool(os.environ.get("RANKING_CORS_ALLOW_ALL"), cfg.cors_allow_all)
        origins = os.environ.get("RANKING_CORS_ORIGINS")
        if origins:
            cfg.cors_allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]
        cfg.ws_heartbeat_sec = cls._parse_float(os.environ.get("RANKING_WS_HEARTBEAT"), cfg.ws_heartbeat_sec)

        cfg.sqlite_path = os.environ.get("RANKING_SQLITE_PATH", cfg.sqlite_path)
        cfg.storage_key = os.environ.get("RANKING_STORAGE_KEY", cfg.storage_key)

        cfg.require_session = cls._parse_bool(os.environ.get("RANKING_REQUIRE_SESSION"), cfg.require_session)
        cfg.admin_token = os.environ.get("RANKING_ADMIN_TOKEN") or cfg.admin_token
        cfg.auth_timeout_sec = cls._parse_float(os.environ.get("RANKING_AUTH_TIMEOUT"), cfg.auth_timeout_sec)

        cfg.remote_url = os.environ.get("RANKING_REMOTE_URL") or cfg.remote_url
        cfg.log_level = os.environ.get("RANKING_LOG_LEVEL", cfg.log_level).upper()
        return cfg
