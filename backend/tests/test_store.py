import os
from decimal import Decimal

import psycopg
import pytest

from backend.app.store import (
    FileStore,
    MemoryStore,
    PostgresStore,
    StoreError,
    build_store,
    merchant_key,
    new_id,
)


def test_merchant_keys_are_namespaced():
    assert merchant_key("products", "m1") == "bitagora_products_m1"
    assert len(new_id()) == 9


def test_memory_store_copies_values_and_encodes_decimals():
    s = MemoryStore()
    rows = [{"id": "a", "price": Decimal("2.50")}]
    s.save_list("bitagora_products_m1", rows)
    rows[0]["id"] = "mutated"
    loaded = s.load_list("bitagora_products_m1")
    assert loaded == [{"id": "a", "price": 2.5}]


def test_load_helpers_tolerate_wrong_shapes():
    s = MemoryStore()
    s.set_item("bitagora_x", {"not": "a list"})
    s.set_item("bitagora_y", [1, {"id": "ok"}, "junk"])
    assert s.load_list("bitagora_x") == []
    assert s.load_list("bitagora_y") == [{"id": "ok"}]
    assert s.load_doc("bitagora_y") is None
    assert s.load_list("bitagora_missing") == []


def test_clear_only_removes_namespaced_keys():
    s = MemoryStore()
    s.set_item("bitagora_a", 1)
    s.set_item("bitagora_b", 2)
    s.set_item("other_app", 3)
    assert s.clear() == 2
    assert s.keys() == []
    assert s.get_item("other_app") == 3


def test_user_items_use_user_prefix():
    s = MemoryStore()
    s.set_user_item("u1", "prefs", {"theme": "light"})
    assert s.get_item("bitagora_user_u1_prefs") == {"theme": "light"}
    s.remove_user_item("u1", "prefs")
    assert s.get_user_item("u1", "prefs") is None


def test_file_store_roundtrip_and_key_quoting(tmp_path):
    s = FileStore(str(tmp_path))
    key = "bitagora_products_../../etc"
    s.save_list(key, [{"id": "p1"}])
    assert s.load_list(key) == [{"id": "p1"}]
    assert os.listdir(tmp_path) == ["bitagora_products_..%2F..%2Fetc.json"]
    assert s.keys() == [key]
    s.remove_item(key)
    s.remove_item(key)
    assert s.keys() == []
    assert s.ping() is True


def test_file_store_treats_corrupt_json_as_missing(tmp_path):
    s = FileStore(str(tmp_path))
    (tmp_path / "bitagora_broken.json").write_text("{not json", encoding="utf-8")
    assert s.get_item("bitagora_broken") is None


def test_build_store_rejects_unknown_backend():
    assert isinstance(build_store("memory"), MemoryStore)
    with pytest.raises(StoreError):
        build_store("redis")


class _DummyCursor:
    def __init__(self, conn):
        self._conn = conn

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params):
        if self._conn.fail:
            raise psycopg.OperationalError("connection refused")
        self._conn.executed.append((" ".join(sql.split()), tuple(params)))

    def fetchone(self):
        return self._conn.rows[0] if self._conn.rows else None

    def fetchall(self):
        return list(self._conn.rows)


class _DummyConn:
    def __init__(self, rows=None, fail=False):
        self.rows = rows or []
        self.fail = fail
        self.executed: list[tuple[str, tuple]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return _DummyCursor(self)


def test_postgres_store_reads_jsonb_value():
    conn = _DummyConn(rows=[{"value": [{"id": "p1"}]}])
    s = PostgresStore(conn_factory=lambda: conn)
    assert s.load_list("bitagora_products_m1") == [{"id": "p1"}]
    sql, params = conn.executed[0]
    assert sql.startswith("SELECT value FROM bitagora_kv")
    assert params == ("bitagora_products_m1",)


def test_postgres_store_upserts_and_lists_by_prefix():
    conn = _DummyConn(rows=[{"key": "bitagora_a"}, {"key": "bitagora_b"}])
    s = PostgresStore(conn_factory=lambda: conn)
    s.set_item("bitagora_a", {"total": Decimal("1.10")})
    assert "ON CONFLICT (key) DO UPDATE" in conn.executed[0][0]
    assert s.keys() == ["bitagora_a", "bitagora_b"]
    assert "starts_with(key, %s)" in conn.executed[1][0]
    assert s.clear() == 2


def test_postgres_errors_become_store_errors():
    s = PostgresStore(conn_factory=lambda: _DummyConn(fail=True))
    with pytest.raises(StoreError):
        s.get_item("bitagora_a")
