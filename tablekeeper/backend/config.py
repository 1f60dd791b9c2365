"""Configuration helpers for backend runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class BackendSettings:
    server_salt: str
    database_url: str | None
    host: str
    port: int
    dm_username: str
    combat_shared: bool
    session_ttl_seconds: int
    reset_ttl_seconds: int
    log_level: str


def load_settings() -> BackendSettings:
    port_raw = os.getenv("TABLEKEEPER_PORT", "8000")
    return BackendSettings(
        server_salt=os.getenv("TABLEKEEPER_SERVER_SALT", "dev-salt"),
        database_url=os.getenv("TABLEKEEPER_DATABASE_URL") or None,
        host=os.getenv("TABLEKEEPER_HOST", "127.0.0.1"),
        port=int(port_raw),
        dm_username=os.getenv("TABLEKEEPER_DM_USERNAME", "dm").strip().lower(),
        combat_shared=os.getenv("TABLEKEEPER_COMBAT_SHARED", "false").strip().lower() in _TRUTHY,
        session_ttl_seconds=int(os.getenv("TABLEKEEPER_SESSION_TTL_SECONDS", str(7 * 24 * 3600))),
        reset_ttl_seconds=int(os.getenv("TABLEKEEPER_RESET_TTL_SECONDS", "3600")),
        log_level=os.getenv("TABLEKEEPER_LOG_LEVEL", "INFO").upper(),
    )
