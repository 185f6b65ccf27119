import os
import asyncpg
from psycopg2.pool import SimpleConnectionPool
from contextlib import contextmanager
from leadgen.settings import POSTGRES_DSN

_pool = None
_sync_pool: SimpleConnectionPool | None = None


def _connect_timeout() -> float:
    try:
        return float(os.getenv("PG_CONNECT_TIMEOUT_S", "3") or 3)
    except Exception:
        return 3.0


async def get_pg_pool():
    global _pool
    if _pool is None:
        # A job runs sequentially, so a very small pool is enough.
        # Short connection timeout to avoid long stalls on DNS/host issues.
        _pool = await asyncpg.create_pool(
            dsn=POSTGRES_DSN,
            min_size=0,
            max_size=int(os.getenv("PG_POOL_MAX", "2") or 2),
            timeout=_connect_timeout(),
            init=lambda conn: conn.execute("SET search_path TO public;"),
        )
    return _pool


async def close_pg_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def _get_sync_pool() -> SimpleConnectionPool:
    global _sync_pool
    if _sync_pool is None:
        max_conn = int(os.getenv("DB_MAX_CONN", "4"))
        _sync_pool = SimpleConnectionPool(
            1, max_conn, dsn=POSTGRES_DSN, connect_timeout=int(_connect_timeout())
        )
    return _sync_pool


@contextmanager
def get_conn():
    """Context-managed pooled psycopg2 connection.

    Usage:
        with get_conn() as conn, conn.cursor() as cur:
            ...

    Behavior:
    - Commits if the block exits without exception.
    - Rolls back on exception, then re-raises.
    - Returns the connection to a small shared pool.
    """
    pool = _get_sync_pool()
    conn = pool.getconn()
    try:
        try:
            yield conn
            if not conn.closed:
                conn.commit()
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise
    finally:
        pool.putconn(conn, close=False)
