"""Database engine setup."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

__all__ = ["open_engine"]

logger = logging.getLogger(__name__)

MAX_OPEN_CONNS = 30
MAX_IDLE_CONNS = 10
CONN_MAX_LIFETIME_SECS = 30 * 60


def open_engine(url: str | URL) -> Engine:
    """Create a pooled engine and check that the database answers."""
    options: dict[str, object] = {"pool_recycle": CONN_MAX_LIFETIME_SECS}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=MAX_IDLE_CONNS,
            max_overflow=MAX_OPEN_CONNS - MAX_IDLE_CONNS,
            pool_pre_ping=True,
        )
    engine = create_engine(url, **options)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        engine.dispose()
        raise
    logger.info("database: connected")
    return engine