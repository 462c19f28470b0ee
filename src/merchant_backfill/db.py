"""
db.py — SQLAlchemy engine factory with a bounded connection pool.

One engine per run. The pool is the only resource shared between the
pipeline's tasks; QueuePool does its own locking.

Pool bounds (from StoreConfig):
  max_idle_conns            → pool_size (connections kept open when idle)
  max_open_conns            → pool_size + max_overflow
  conn_max_lifetime_seconds → pool_recycle
  conn_max_idle_seconds     → checkin/checkout listeners below

Usage:
    from merchant_backfill.db import create_store_engine

    engine = create_store_engine(settings.database_url, settings.store_config())
    ...
    engine.dispose()
"""

from __future__ import annotations

import time
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, DisconnectionError, NoSuchModuleError

from merchant_backfill.config import StoreConfig
from merchant_backfill.utils.logging import get_logger

logger = get_logger(__name__)

_CHECKED_IN_AT = "merchant_backfill_checked_in_at"


class StoreConnectionError(Exception):
    """The store cannot be reached or the engine cannot be configured."""


def create_store_engine(
    database_url: str,
    config: StoreConfig,
    **engine_kwargs: Any,
) -> Engine:
    """
    Return an Engine whose pool respects the bounds in *config*.

    Args:
        database_url:  SQLAlchemy URL, e.g. mysql+pymysql://user:pw@host/db.
        config:        Pool bounds and table layout.
        **engine_kwargs: Extra create_engine() arguments (connect_args, echo…).

    Raises:
        StoreConnectionError: malformed URL or missing DBAPI driver.
    """
    try:
        if make_url(database_url).get_backend_name() == "sqlite":
            # pooled sqlite connections move between worker threads
            connect_args = dict(engine_kwargs.pop("connect_args", {}))
            connect_args.setdefault("check_same_thread", False)
            engine_kwargs["connect_args"] = connect_args
        engine = create_engine(
            database_url,
            pool_size=config.max_idle_conns,
            max_overflow=config.max_open_conns - config.max_idle_conns,
            pool_recycle=config.conn_max_lifetime_seconds,
            pool_pre_ping=True,
            **engine_kwargs,
        )
    except (ArgumentError, NoSuchModuleError, ImportError, TypeError) as exc:
        # TypeError: the dialect's pool class takes no size bounds (sqlite :memory:)
        raise StoreConnectionError(f"cannot configure store engine: {exc}") from exc

    _install_idle_timeout(engine, config.conn_max_idle_seconds)

    logger.info(
        "store_engine_created",
        dialect=engine.dialect.name,
        max_open_conns=config.max_open_conns,
        max_idle_conns=config.max_idle_conns,
        conn_max_lifetime_seconds=config.conn_max_lifetime_seconds,
        conn_max_idle_seconds=config.conn_max_idle_seconds,
    )
    return engine


def _install_idle_timeout(engine: Engine, max_idle_seconds: float) -> None:
    """Discard pooled connections that sat unused for longer than the bound."""

    @event.listens_for(engine, "checkin")
    def _stamp_checkin(dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info[_CHECKED_IN_AT] = time.monotonic()

    @event.listens_for(engine, "checkout")
    def _reject_stale(
        dbapi_connection: Any, connection_record: Any, connection_proxy: Any
    ) -> None:
        checked_in_at = connection_record.info.pop(_CHECKED_IN_AT, None)
        if checked_in_at is None:
            return
        idle_for = time.monotonic() - checked_in_at
        if idle_for > max_idle_seconds:
            logger.debug("store_connection_idle_expired", idle_seconds=round(idle_for, 1))
            # The pool invalidates this connection and hands out a fresh one.
            raise DisconnectionError("connection idle longer than max idle time")
