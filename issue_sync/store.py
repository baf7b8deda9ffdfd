"""
Record store adapter: keyed partial updates against the `issues` table.

The adapter holds a psycopg_pool connection pool handed to it by the caller
and runs one `UPDATE ... WHERE id = %s` per call, each on a connection taken
from the pool and inside its own transaction. It keeps no other state.

`updated_at` is maintained here rather than by a database trigger: when the
supplied fields do not carry an explicit `updated_at`, the statement sets it
to `now()`.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Tuple

import psycopg
from psycopg import sql
from psycopg.errors import DeadlockDetected, SerializationFailure
from psycopg_pool import ConnectionPool
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from issue_sync.exceptions import StoreError
from issue_sync.utils.logging import get_logger

log = get_logger(__name__)

ISSUES_TABLE = "issues"
ISSUE_COLUMNS = frozenset({"id", "summary", "status", "di", "created_at", "updated_at"})

# SQLSTATE 40001 and 40P01; named explicitly since their base class moved
# between psycopg releases.
RETRYABLE_ERRORS = (SerializationFailure, DeadlockDetected)


def build_update(
    identifier: int,
    fields: Mapping[str, Any],
    table: str = ISSUES_TABLE,
) -> Tuple[sql.Composed, list]:
    """
    Compose the keyed UPDATE statement and its parameters.

    Column order follows the mapping's iteration order. The identifier is
    always the last parameter.
    """
    unknown = set(fields) - ISSUE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown issue column(s): {', '.join(sorted(unknown))}")

    assignments = [
        sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder()) for column in fields
    ]
    if "updated_at" not in fields:
        assignments.append(sql.SQL("updated_at = now()"))

    query = sql.SQL("UPDATE {table} SET {assignments} WHERE id = {key}").format(
        table=sql.Identifier(table),
        assignments=sql.SQL(", ").join(assignments),
        key=sql.Placeholder(),
    )
    params = [*fields.values(), identifier]
    return query, params


class IssueStore:
    """
    Stateless executor of partial updates on issues.

    Parameters
    ----------
    pool : psycopg_pool.ConnectionPool
        An open pool. Each update borrows one connection and returns it; a
        connection the server dropped is replaced by the pool. The store
        takes ownership: `close()` closes the pool.
    retry_attempts : int
        Total attempts for statements aborted by a serialization failure or
        deadlock. 1 means no retry. Other errors are never retried.
    """

    def __init__(self, pool: ConnectionPool, retry_attempts: int = 1, table: str = ISSUES_TABLE) -> None:
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")
        self._pool: Optional[ConnectionPool] = pool
        self.table = table
        self.retry_attempts = retry_attempts

    def _connection_pool(self) -> ConnectionPool:
        if self._pool is None:
            raise StoreError("Store is closed")
        return self._pool

    def _execute(self, query: sql.Composed, params: Iterable[Any]) -> int:
        with self._connection_pool().connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(query, list(params))
                    return cur.rowcount

    def apply_update(self, identifier: int, fields: Mapping[str, Any]) -> int:
        """
        Apply a partial update to the issue with the given identifier.

        Parameters
        ----------
        identifier : int
            Primary key of the row to update.
        fields : Mapping[str, Any]
            Column/value pairs to overwrite. Columns not listed are untouched.

        Returns
        -------
        int
            Rows affected. 0 when no row has that identifier, which is not
            an error.

        Raises
        ------
        StoreError
            If the database rejects the statement or the connection fails.
            The transaction is rolled back, so nothing is partially applied.
        """
        if not fields:
            log.debug("No fields to apply", extra={"issue_id": identifier})
            return 0

        query, params = build_update(identifier, fields, table=self.table)
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True,
        )
        try:
            rows = retrying(self._execute, query, params)
        except psycopg.Error as exc:
            raise StoreError(
                f"Update of issue {identifier} failed: {type(exc).__name__}: {exc}",
                identifier=identifier,
            ) from exc

        log.debug(
            "Partial update executed",
            extra={"issue_id": identifier, "columns": sorted(fields), "rows": rows},
        )
        return rows


    def close(self) -> None:
        """Close the underlying pool. Safe to call more than once."""
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        pool.close()

    def __enter__(self) -> "IssueStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["ISSUES_TABLE", "ISSUE_COLUMNS", "RETRYABLE_ERRORS", "IssueStore", "build_update"]
