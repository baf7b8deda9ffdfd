"""
Pytest configuration for issue-sync.

Provides fixtures for:
- Settings isolated from the developer's environment
- Database connection management for integration tests
- Seeding the issues table
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Generator, Optional

import psycopg
import pytest
from psycopg.rows import dict_row

from issue_sync.config import Settings

SETTINGS_ENV_VARS = (
    "DB_HOST",
    "DB_PORT",
    "DB_USER",
    "DB_PASSWORD",
    "DB_NAME",
    "DB_CONNECT_TIMEOUT",
    "MQ_URL",
    "QUEUE_NAME",
    "PREFETCH_COUNT",
    "POLL_INTERVAL_SECONDS",
    "STORE_RETRY_ATTEMPTS",
    "APP_ENV",
    "LOG_LEVEL",
    "LOG_JSON",
)

SEED_CREATED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)
SEED_ISSUES = [
    (1, "Login page broken", "open", 1),
    (2, "Typo in footer", "in_progress", 2),
    (5, "Crash on export", "open", 3),
]


@pytest.fixture
def clean_env(monkeypatch) -> None:
    """Remove every settings variable from the environment for the test."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def unit_settings(clean_env) -> Settings:
    """Settings for unit tests: defaults, no .env file, fast poll ticks."""
    return Settings(
        _env_file=None,
        queue_name="issue_updates_test",
        prefetch_count=3,
        poll_interval_seconds=0.01,
    )


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "issue_sync"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped autocommit connection for seeding and assertions.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(db_connection: psycopg.Connection) -> bool:
    """
    Ensure the issues table exists, creating it from db/init.sql if necessary.
    """
    init_sql_path = Path(__file__).parent.parent / "db" / "init.sql"
    with db_connection.cursor() as cur:
        cur.execute(init_sql_path.read_text(encoding="utf-8"))
    return True


@pytest.fixture(scope="function")
def clean_issues_table(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty the issues table before and after each test function.
    """
    with db_connection.cursor() as cur:
        cur.execute("TRUNCATE TABLE public.issues;")
    yield
    with db_connection.cursor() as cur:
        cur.execute("TRUNCATE TABLE public.issues;")


@pytest.fixture(scope="function")
def seeded_issues(db_connection: psycopg.Connection, clean_issues_table) -> list[int]:
    """
    Seed a handful of issues with fixed timestamps.

    Returns the seeded identifiers.
    """
    with db_connection.cursor() as cur:
        cur.executemany(
            "INSERT INTO public.issues (id, summary, status, di, created_at, updated_at) "
            "VALUES (%s, %s, %s, %s, %s, %s);",
            [(*row, SEED_CREATED_AT, SEED_CREATED_AT) for row in SEED_ISSUES],
        )
    return [row[0] for row in SEED_ISSUES]


@pytest.fixture(scope="function")
def fetch_issue(db_connection: psycopg.Connection) -> Callable[[int], Optional[dict]]:
    """Return a reader for one issue row as a dict, or None when absent."""

    def _fetch(issue_id: int) -> Optional[dict]:
        with db_connection.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT id, summary, status, di, created_at, updated_at FROM public.issues WHERE id = %s;",
                (issue_id,),
            )
            return cur.fetchone()

    return _fetch
