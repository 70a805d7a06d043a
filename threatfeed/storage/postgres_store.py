"""Pooled Postgres handle shared by the committer, job tracker and query store.

Built once per process and passed in explicitly. Every unit of work borrows its
own connection through `connection()`; nothing holds a connection across chunks.
"""

from __future__ import annotations

from typing import Optional

from psycopg_pool import ConnectionPool


DEFAULT_PG_DSN = "dbname=threatfeed user=threatfeed password=threatfeed host=localhost port=5432"


class PostgresStore:
    def __init__(
        self,
        pg_dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 5,
        timeout: float = 30.0,
        pool: Optional[ConnectionPool] = None,
    ):
        self.pg_dsn = pg_dsn
        self.pool = pool or ConnectionPool(
            pg_dsn,
            min_size=min_size,
            max_size=max_size,
            timeout=timeout,
            open=False,
            name="threatfeed",
        )

    def open(self) -> "PostgresStore":
        self.pool.open(wait=False)
        return self

    def close(self) -> None:
        self.pool.close()

    def connection(self):
        """Borrow a pooled connection (context manager).

        The pool commits on clean exit and rolls back on error before the
        connection is returned. Raises psycopg_pool.PoolTimeout when no
        connection can be obtained.
        """
        return self.pool.connection()

    def __enter__(self) -> "PostgresStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
