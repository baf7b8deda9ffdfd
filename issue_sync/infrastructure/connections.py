"""
Connection factory utilities for issue-sync.

Opens the two long-lived resources the bridge owns: a one-connection
PostgreSQL pool (psycopg_pool) and a RabbitMQ connection (kombu over py-amqp).
Both are returned to the caller, who owns their release.

Startup connection failures are fatal: nothing here retries.
"""

from __future__ import annotations

from typing import Optional

from kombu import Connection as BrokerConnection
from psycopg_pool import ConnectionPool

from issue_sync.config import Settings, get_settings
from issue_sync.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a PostgreSQL DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def open_database_pool(settings: Optional[Settings] = None) -> ConnectionPool:
    """
    Open a single-connection synchronous pool and wait for it to connect.

    Connections run in autocommit mode; the store wraps each update in an
    explicit `transaction()` block. The pool checks a connection before
    handing it out and replaces it when the server dropped it, so a database
    restart costs the updates in flight, not every later one.

    Raises
    ------
    psycopg_pool.PoolTimeout
        If no connection could be established within `db_connect_timeout`.
    """
    settings = settings or get_settings()
    pool = ConnectionPool(
        conninfo=build_dsn(settings),
        min_size=1,
        max_size=1,
        kwargs={"autocommit": True, "connect_timeout": settings.db_connect_timeout},
        check=ConnectionPool.check_connection,
        timeout=settings.db_connect_timeout,
        name="issue-sync",
        open=False,
    )
    try:
        pool.open(wait=True, timeout=settings.db_connect_timeout)
    except Exception:
        pool.close()
        raise
    log.info(
        "Database pool opened",
        extra={"db_host": settings.db_host, "db_port": settings.db_port, "db_name": settings.db_name},
    )
    return pool


def connect_broker(settings: Optional[Settings] = None) -> BrokerConnection:
    """
    Open an AMQP connection to the broker named by `mq_url`.

    Connects eagerly, with a single attempt, so startup fails fast.

    Raises
    ------
    OSError, amqp.exceptions.AMQPError
        If the broker is unreachable or rejects the credentials.
    """
    settings = settings or get_settings()
    conn = BrokerConnection(settings.mq_url)
    conn.connect()
    log.info("Broker connection opened", extra={"mq_uri": conn.as_uri()})
    return conn


__all__ = [
    "build_dsn",
    "connect_broker",
    "open_database_pool",
]
