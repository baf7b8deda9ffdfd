"""
issue-sync - RabbitMQ to PostgreSQL bridge for issue updates.

Consumes JSON update envelopes from a queue and applies each one as a keyed
partial update to the `issues` table:

- Decode the envelope (pydantic)
- Apply the supplied fields to the matching row (psycopg)
- Acknowledge on success, reject without requeue on failure (kombu)

Delivery is at-least-once: a message is acknowledged only after its update
has been committed.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from issue_sync.config import Settings, get_settings
from issue_sync.consumer import ConsumerStats, Outcome, UpdateConsumer
from issue_sync.domain.models import Issue, IssueUpdate
from issue_sync.exceptions import DecodeError, IssueSyncError, StoreError
from issue_sync.store import IssueStore
from issue_sync.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "Issue",
    "IssueUpdate",
    # Store and consumer
    "IssueStore",
    "UpdateConsumer",
    "ConsumerStats",
    "Outcome",
    # Errors
    "IssueSyncError",
    "DecodeError",
    "StoreError",
    # Logging
    "configure_logging",
    "get_logger",
]
