"""Redis connection setup."""

from __future__ import annotations

import redis

__all__ = ["open_redis"]


def open_redis(addr: str, db: int = 0) -> redis.Redis:
    """Connect to Redis at ``host:port`` and ping it; raise if it is unreachable."""
    host, _, port = addr.rpartition(":")
    if not port.isdigit():
        raise ValueError(f"invalid redis address {addr!r}")
    client = redis.Redis(
        host=host.strip("[]") or "localhost",
        port=int(port),
        db=db,
        socket_connect_timeout=5.0,
        socket_timeout=5.0,
    )
    try:
        client.ping()
    except redis.RedisError:
        client.close()
        raise
    return client