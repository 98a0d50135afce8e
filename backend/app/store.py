"""
Key/value document store backing every BitAgora resource.

Each key holds one JSON document (usually a list of records for a merchant).
Keys are namespaced with `bitagora_`; `clear()` only ever removes namespaced keys.

Backends:
- MemoryStore: process-local dict (tests, throwaway dev runs)
- FileStore: one `<key>.json` file per key under BITAGORA_DATA_DIR
- PostgresStore: `bitagora_kv` table with a jsonb value column
"""
import json
import os
import secrets
import string
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from urllib.parse import quote, unquote

import psycopg
from psycopg.types.json import Jsonb

from .config import settings
from .logs import json_log

KEY_PREFIX = "bitagora_"

# Every per-merchant document kind; keys are `bitagora_<kind>_<merchant_id>`.
MERCHANT_KINDS = (
    "products",
    "transactions",
    "employees",
    "cart_sessions",
    "business_setup",
    "tax_settings",
    "payment_settings",
    "payment_credentials",
    "payment_fees",
    "qr_providers",
    "onboarding_progress",
    "payments",
    "lightning_invoices",
    "lightning_events",
    "feature_flags",
)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class StoreError(RuntimeError):
    pass


def _json_default(v):
    if isinstance(v, Decimal):
        return float(v)
    if isinstance(v, datetime):
        return v.isoformat()
    return str(v)


def new_id(length: int = 9) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def merchant_key(kind: str, merchant_id: str) -> str:
    return f"{KEY_PREFIX}{kind}_{merchant_id}"


def user_key(user_id: str, key: str) -> str:
    return f"{KEY_PREFIX}user_{user_id}_{key}"


class BaseStore:
    name = "base"

    def __init__(self) -> None:
        # Serialises read-modify-write cycles on list documents within this process.
        self._lock = threading.RLock()

    def get_item(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set_item(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = KEY_PREFIX) -> list[str]:
        raise NotImplementedError

    def ping(self) -> bool:
        return True

    def clear(self) -> int:
        removed = 0
        for key in self.keys(KEY_PREFIX):
            self.remove_item(key)
            removed += 1
        return removed

    @contextmanager
    def locked(self):
        with self._lock:
            yield self

    def load_list(self, key: str) -> list[dict]:
        value = self.get_item(key)
        if not isinstance(value, list):
            return []
        return [r for r in value if isinstance(r, dict)]

    def save_list(self, key: str, rows: list[dict]) -> None:
        self.set_item(key, list(rows))

    def load_doc(self, key: str) -> Optional[dict]:
        value = self.get_item(key)
        return value if isinstance(value, dict) else None

    def get_user_item(self, user_id: str, key: str) -> Optional[Any]:
        return self.get_item(user_key(user_id, key))

    def set_user_item(self, user_id: str, key: str, value: Any) -> None:
        self.set_item(user_key(user_id, key), value)

    def remove_user_item(self, user_id: str, key: str) -> None:
        self.remove_item(user_key(user_id, key))


class MemoryStore(BaseStore):
    name = "memory"

    def __init__(self) -> None:
        super().__init__()
        # Values are kept serialised so callers never share mutable state with the store.
        self._data: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set_item(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, default=_json_default)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = KEY_PREFIX) -> list[str]:
        return sorted(k for k in list(self._data) if k.startswith(prefix))


class FileStore(BaseStore):
    name = "file"

    def __init__(self, data_dir: str) -> None:
        super().__init__()
        self.data_dir = data_dir
        try:
            os.makedirs(self.data_dir, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"cannot create data dir {self.data_dir}: {exc}") from exc

    def _path(self, key: str) -> str:
        # Keys embed merchant ids from request headers; quote them so they can never escape data_dir.
        return os.path.join(self.data_dir, quote(key, safe="") + ".json")

    def get_item(self, key: str) -> Optional[Any]:
        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"failed to read {key}: {exc}") from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            json_log("warning", "store.corrupt_item", backend=self.name, key=key)
            return None

    def set_item(self, key: str, value: Any) -> None:
        payload = json.dumps(value, default=_json_default, indent=2)
        try:
            fd, tmp = tempfile.mkstemp(dir=self.data_dir, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self._path(key))
        except OSError as exc:
            raise StoreError(f"failed to write {key}: {exc}") from exc

    def remove_item(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StoreError(f"failed to delete {key}: {exc}") from exc

    def keys(self, prefix: str = KEY_PREFIX) -> list[str]:
        try:
            names = os.listdir(self.data_dir)
        except OSError as exc:
            raise StoreError(f"failed to list {self.data_dir}: {exc}") from exc
        out = []
        for name in names:
            if not name.endswith(".json"):
                continue
            key = unquote(name[: -len(".json")])
            if key.startswith(prefix):
                out.append(key)
        return sorted(out)

    def ping(self) -> bool:
        return os.path.isdir(self.data_dir) and os.access(self.data_dir, os.W_OK)


class PostgresStore(BaseStore):
    name = "postgres"

    def __init__(self, conn_factory=None) -> None:
        super().__init__()
        if conn_factory is None:
            from .db import get_conn

            conn_factory = get_conn
        self._conn_factory = conn_factory

    def ensure_schema(self) -> None:
        self._execute(
            """
            CREATE TABLE IF NOT EXISTS bitagora_kv (
              key text PRIMARY KEY,
              value jsonb NOT NULL,
              updated_at timestamptz NOT NULL DEFAULT now()
            )
            """,
            (),
        )

    def _execute(self, sql: str, params: tuple, *, fetch: str = ""):
        try:
            with self._conn_factory() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    if fetch == "one":
                        return cur.fetchone()
                    if fetch == "all":
                        return cur.fetchall()
                    return None
        except psycopg.Error as exc:
            raise StoreError(f"postgres store error: {exc}") from exc

    def get_item(self, key: str) -> Optional[Any]:
        row = self._execute("SELECT value FROM bitagora_kv WHERE key = %s", (key,), fetch="one")
        if not row:
            return None
        return row["value"]

    def set_item(self, key: str, value: Any) -> None:
        # Round-trip through json so Decimals/datetimes are stored the same way the other backends store them.
        doc = json.loads(json.dumps(value, default=_json_default))
        self._execute(
            """
            INSERT INTO bitagora_kv (key, value, updated_at)
            VALUES (%s, %s, now())
            ON CONFLICT (key) DO UPDATE
            SET value = EXCLUDED.value, updated_at = now()
            """,
            (key, Jsonb(doc)),
        )

    def remove_item(self, key: str) -> None:
        self._execute("DELETE FROM bitagora_kv WHERE key = %s", (key,))

    def keys(self, prefix: str = KEY_PREFIX) -> list[str]:
        # starts_with() instead of LIKE: "_" in the prefix would be a LIKE wildcard.
        rows = self._execute(
            "SELECT key FROM bitagora_kv WHERE starts_with(key, %s) ORDER BY key",
            (prefix,),
            fetch="all",
        )
        return [r["key"] for r in (rows or [])]

    def clear(self) -> int:
        rows = self._execute(
            "DELETE FROM bitagora_kv WHERE starts_with(key, %s) RETURNING key",
            (KEY_PREFIX,),
            fetch="all",
        )
        return len(rows or [])

    def ping(self) -> bool:
        row = self._execute("SELECT 1 AS ok", (), fetch="one")
        return bool(row and row.get("ok") == 1)


def build_store(backend: Optional[str] = None) -> BaseStore:
    kind = (backend or settings.store_backend or "file").strip().lower()
    if kind == "memory":
        return MemoryStore()
    if kind == "file":
        return FileStore(settings.data_dir)
    if kind == "postgres":
        store = PostgresStore()
        store.ensure_schema()
        return store
    raise StoreError(f"unknown store backend: {kind}")


_store: Optional[BaseStore] = None
_store_lock = threading.Lock()


def get_store() -> BaseStore:
    global _store
    with _store_lock:
        if _store is None:
            _store = build_store()
        return _store


def set_store(store: Optional[BaseStore]) -> None:
    global _store
    with _store_lock:
        _store = store
