# qrsec/db.py

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

import psycopg2
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool


class Database:
    """
    Lazily opened pooled Postgres connection manager.

    The pool is only created on first use so the service can start (and
    answer link checks) while the history store is down.
    """

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 10):
        self.dsn = dsn
        self.minconn = minconn
        self.maxconn = maxconn
        self._pool: Optional[ThreadedConnectionPool] = None
        self._lock = threading.Lock()
        self._initialized = False

    def _get_pool(self) -> ThreadedConnectionPool:
        with self._lock:
            if self._pool is None:
                self._pool = ThreadedConnectionPool(self.minconn, self.maxconn, dsn=self.dsn)
            return self._pool

    @contextmanager
    def cursor(self) -> Iterator[Tuple[object, psycopg2.extras.RealDictCursor]]:
        """
        Yield a real-dict cursor inside a transaction.
        Rolls back on error and always returns the connection to the pool.
        """
        pool = self._get_pool()
        conn = pool.getconn()
        cur = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        try:
            yield conn, cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cur.close()
            pool.putconn(conn)

    def ensure_schema(self) -> None:
        """Create the scan record table if it does not already exist."""
        if self._initialized:
            return
        with self.cursor() as (_, cur):
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS scan_records (
                    id BIGSERIAL PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    url TEXT NOT NULL,
                    status TEXT NOT NULL,
                    score INTEGER NOT NULL,
                    type TEXT NOT NULL DEFAULT 'url',
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                );
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_scan_records_owner_ts
                ON scan_records (owner_id, created_at DESC);
                """
            )
        self._initialized = True

    def close(self) -> None:
        with self._lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None
