"""
PostgreSQL-backed account and attempt stores.

- Connection pooling via psycopg
- Tables created on startup if missing
- Any driver error surfaces as StorageUnavailable
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from signin.errors import StorageUnavailable
from signin.models import Account
from signin.store import AttemptRecord

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS accounts (
        email TEXT PRIMARY KEY,
        id TEXT NOT NULL,
        name TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS login_attempts (
        email TEXT PRIMARY KEY,
        failures INTEGER NOT NULL,
        locked_until DOUBLE PRECISION
    )
    """,
)


class Database:
    """Database connection manager."""

    def __init__(self, db_url: str) -> None:
        self._db_url = db_url
        self._pool: ConnectionPool | None = None

    def _get_pool(self) -> ConnectionPool:
        """Get or create connection pool."""
        if self._pool is None:
            self._pool = ConnectionPool(
                self._db_url,
                min_size=1,
                max_size=10,
                kwargs={"row_factory": dict_row},
                open=True,
            )
        return self._pool

    @contextmanager
    def connection(self) -> Generator[psycopg.Connection, None, None]:
        """Get a connection from the pool, mapping driver errors to StorageUnavailable."""
        try:
            pool = self._get_pool()
            with pool.connection() as conn:
                yield conn
        except psycopg.Error as exc:
            logger.error("Account storage error: %s", exc)
            raise StorageUnavailable() from exc

    def create_schema(self) -> None:
        """Create the accounts and login_attempts tables."""
        with self.connection() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    def test_connection(self) -> bool:
        """Test database connectivity."""
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1")
            return True
        except StorageUnavailable:
            return False

    def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            self._pool.close()
            self._pool = None


class PostgresAccountStore:
    """Accounts stored in the ``accounts`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, email: str) -> Account | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT id, name, email, password_hash FROM accounts WHERE email = %(email)s",
                {"email": email},
            ).fetchone()
        if row is None:
            return None
        return Account(**row)

    def put(self, account: Account) -> None:
        # Accounts are immutable once created.
        with self._db.connection() as conn:
            conn.execute(
                "INSERT INTO accounts (email, id, name, password_hash) "
                "VALUES (%(email)s, %(id)s, %(name)s, %(password_hash)s) "
                "ON CONFLICT (email) DO NOTHING",
                account.model_dump(),
            )

    def delete(self, email: str) -> None:
        with self._db.connection() as conn:
            conn.execute("DELETE FROM accounts WHERE email = %(email)s", {"email": email})

    def count(self) -> int:
        with self._db.connection() as conn:
            row = conn.execute("SELECT count(*) AS n FROM accounts").fetchone()
        return row["n"] if row else 0


class PostgresAttemptStore:
    """Attempt records stored in the ``login_attempts`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, email: str) -> AttemptRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT failures, locked_until FROM login_attempts WHERE email = %(email)s",
                {"email": email},
            ).fetchone()
        if row is None:
            return None
        return AttemptRecord(failures=row["failures"], locked_until=row["locked_until"])

    def put(self, email: str, record: AttemptRecord) -> None:
        with self._db.connection() as conn:
            conn.execute(
                "INSERT INTO login_attempts (email, failures, locked_until) "
                "VALUES (%(email)s, %(failures)s, %(locked_until)s) "
                "ON CONFLICT (email) DO UPDATE SET "
                "failures = EXCLUDED.failures, locked_until = EXCLUDED.locked_until",
                {
                    "email": email,
                    "failures": record.failures,
                    "locked_until": record.locked_until,
                },
            )

    def delete(self, email: str) -> None:
        with self._db.connection() as conn:
            conn.execute("DELETE FROM login_attempts WHERE email = %(email)s", {"email": email})
