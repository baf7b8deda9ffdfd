"""
Exception types raised by issue-sync.

Connection failures at startup are not wrapped: psycopg and kombu errors
propagate unchanged to the caller of `UpdateConsumer.from_settings`.
"""

from __future__ import annotations

from typing import Optional

_BODY_EXCERPT_CHARS = 200


class IssueSyncError(Exception):
    """Base class for all issue-sync errors."""


class DecodeError(IssueSyncError):
    """
    A message body could not be turned into an `IssueUpdate`.

    Raised for malformed JSON as well as for well-formed JSON that does not
    match the envelope shape (missing `id`, wrong field types).
    """

    def __init__(self, message: str, body: bytes = b"") -> None:
        super().__init__(message)
        self.body_excerpt = body[:_BODY_EXCERPT_CHARS].decode("utf-8", errors="replace")


class StoreError(IssueSyncError):
    """A keyed partial update failed in the backing database."""

    def __init__(self, message: str, identifier: Optional[int] = None) -> None:
        super().__init__(message)
        self.identifier = identifier


__all__ = ["IssueSyncError", "DecodeError", "StoreError"]
