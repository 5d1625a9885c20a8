"""Service configuration read from the environment."""

from __future__ import annotations

import os
import re
import socket
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import quote

__all__ = ["Config", "load_config"]

DEFAULT_MYSQL_PASSWORD = "password"
DEFAULT_IDEMPOTENCY_TTL_SECS = 300

_INTEGER = re.compile(r"[+-]?\d+")


@dataclass
class Config:
    """Settings for the HTTP server, MySQL and Redis."""

    app_port: str = "8080"
    mysql_host: str = "mysql"
    mysql_port: str = "3306"
    mysql_db: str = "amartha"
    mysql_user: str = "amartha"
    mysql_pass: str = DEFAULT_MYSQL_PASSWORD
    redis_addr: str = "redis:6379"
    redis_db: int = 0
    idempotency_ttl_secs: int = DEFAULT_IDEMPOTENCY_TTL_SECS

    def validate(self) -> None:
        """Raise ValueError when a required setting is missing or malformed."""
        if not (self.mysql_host and self.mysql_port and self.mysql_db and self.mysql_user):
            raise ValueError("missing MySQL config (MYSQL_HOST/PORT/DB/USER)")
        try:
            _lookup_tcp_port(self.mysql_port)
        except ValueError as exc:
            raise ValueError(f'invalid MYSQL_PORT "{self.mysql_port}": {exc}') from exc
        if not self.app_port:
            raise ValueError("missing APP_PORT")

    def mysql_dsn(self) -> str:
        """Return the database URL for the configured MySQL server."""
        host = f"[{self.mysql_host}]" if ":" in self.mysql_host else self.mysql_host
        user = quote(self.mysql_user, safe="")
        secret = quote(self.mysql_pass, safe="")
        database = quote(self.mysql_db, safe="")
        return f"mysql+pymysql://{user}:{secret}@{host}:{self.mysql_port}/{database}?charset=utf8mb4"


def _lookup_tcp_port(port: str) -> int:
    if _INTEGER.fullmatch(port):
        if not 0 <= int(port) <= 0xFFFF:
            raise ValueError("invalid port")
        return int(port)
    try:
        return socket.getservbyname(port, "tcp")
    except OSError as exc:
        raise ValueError("unknown port") from exc


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    """Build a Config from environment variables, falling back to defaults."""
    env = os.environ if environ is None else environ
    base = Config()
    config = Config(
        app_port=env.get("APP_PORT") or base.app_port,
        mysql_host=env.get("MYSQL_HOST") or base.mysql_host,
        mysql_port=env.get("MYSQL_PORT") or base.mysql_port,
        mysql_db=env.get("MYSQL_DB") or base.mysql_db,
        mysql_user=env.get("MYSQL_USER") or base.mysql_user,
        mysql_pass=env.get("MYSQL_PASS") or base.mysql_pass,
        redis_addr=env.get("REDIS_ADDR") or base.redis_addr,
    )
    redis_db = env.get("REDIS_DB") or ""
    if _INTEGER.fullmatch(redis_db):
        config.redis_db = int(redis_db)
    ttl = env.get("IDEMPOTENCY_TTL_SECONDS") or ""
    if _INTEGER.fullmatch(ttl):
        config.idempotency_ttl_secs = int(ttl)
    return config