import os
import threading
from psycopg.rows import dict_row
from contextlib import contextmanager

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import settings


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default

# Pool sizing defaults are conservative for local/dev. Override in prod via env:
# - DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE
_POOL_MIN = _env_int("DB_POOL_MIN_SIZE", 1)
_POOL_MAX = _env_int("DB_POOL_MAX_SIZE", 10)

# The pool is only opened when the postgres store is selected; memory/file
# deployments never touch the database.
_pool = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    global _pool
    with _pool_lock:
        if _pool is None:
            if not settings.db_url:
                raise RuntimeError("DATABASE_URL is not configured")
            _pool = ConnectionPool(
                conninfo=settings.db_url,
                min_size=_POOL_MIN,
                max_size=_POOL_MAX,
                kwargs={"row_factory": dict_row},
                open=True,
            )
        return _pool


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:`
    # - commit on success
    # - rollback on exception
    # - return connection to pool
    with pool.connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn(_get_pool())


def close_pools() -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    global _pool
    with _pool_lock:
        if _pool is None:
            return
        try:
            _pool.close()
        except Exception:
            pass
        _pool = None
