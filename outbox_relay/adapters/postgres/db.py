from contextlib import contextmanager
from typing import Iterator, Optional, Sequence, Union

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from outbox_relay.domain.errors import DuplicateRecordError

Params = Optional[Union[Sequence, dict]]


class PostgresPool:
    """Small thread-safe connection pool for the messaging database."""

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 5):
        self._pool = ThreadedConnectionPool(minconn, maxconn, dsn=dsn, cursor_factory=RealDictCursor)

    @contextmanager
    def connection(self) -> Iterator[psycopg2.extensions.connection]:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[psycopg2.extensions.connection]:
        """Borrow a connection for one transaction: commit on success, roll back on error."""
        with self.connection() as conn:
            conn.autocommit = False
            try:
                yield conn
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    def close(self) -> None:
        self._pool.closeall()


def fetch_one(conn, query: str, params: Params = None):
    with conn.cursor() as cur:
        cur.execute(query, params or ())
        return cur.fetchone()


def fetch_all(conn, query: str, params: Params = None):
    with conn.cursor() as cur:
        cur.execute(query, params or ())
        return cur.fetchall()


def execute(conn, query: str, params: Params = None) -> int:
    with conn.cursor() as cur:
        cur.execute(query, params or ())
        return cur.rowcount


def insert_returning(conn, query: str, params: Params = None):
    """Run an INSERT ... RETURNING inside a savepoint.

    A unique violation is rolled back to the savepoint (so the surrounding
    transaction stays usable) and surfaced as ``DuplicateRecordError``.
    """
    with conn.cursor() as cur:
        cur.execute("SAVEPOINT relay_insert")
        try:
            cur.execute(query, params or ())
        except pg_errors.UniqueViolation as exc:
            cur.execute("ROLLBACK TO SAVEPOINT relay_insert")
            raise DuplicateRecordError(str(exc).strip()) from exc
        row = cur.fetchone()
        cur.execute("RELEASE SAVEPOINT relay_insert")
        return row
