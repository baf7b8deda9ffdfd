"""
Infrastructure package for issue-sync.

Centralizes connectivity concerns (PostgreSQL and RabbitMQ connection
factories). Keep this layer focused on I/O and resource acquisition,
decoupled from the consumer loop and the store adapter.
"""

from issue_sync.infrastructure.connections import (
    build_dsn,
    connect_broker,
    open_database_pool,
)

__all__ = [
    "build_dsn",
    "connect_broker",
    "open_database_pool",
]
