from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.payment_guards import assert_refundable, tender_change
from backend.app.sales import apply_status, find_transaction, products_key, set_transaction_status, transactions_key
from backend.app.store import MemoryStore


def _store_with_product(stock=5):
    store = MemoryStore()
    store.save_list(products_key("m1"), [{"id": "p1", "name": "Latte", "stock_quantity": stock, "in_stock": stock > 0}])
    return store


def _stock(store):
    p = store.load_list(products_key("m1"))[0]
    return p["stock_quantity"], p["in_stock"]


def test_tender_change():
    assert tender_change(Decimal("7.25"), Decimal("10")) == Decimal("2.75")
    assert tender_change(Decimal("7.25"), None) is None
    with pytest.raises(HTTPException) as exc_info:
        tender_change(Decimal("7.25"), Decimal("5"))
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "amount tendered is less than total"


def test_only_completed_transactions_are_refundable():
    assert_refundable("completed")
    with pytest.raises(HTTPException) as exc_info:
        assert_refundable("pending")
    assert exc_info.value.detail == "only completed transactions can be refunded"


def test_completion_decrements_stock_once_and_refund_restocks():
    store = _store_with_product(stock=5)
    tx = {"id": "tx1", "payment_status": "pending", "items": [{"id": "p1", "quantity": 2}], "stock_applied": False}
    apply_status(store, "m1", tx, "completed")
    apply_status(store, "m1", tx, "completed")
    assert _stock(store) == (3, True)
    assert tx["completed_at"]

    apply_status(store, "m1", tx, "refunded", refunded_by="emp_001")
    assert _stock(store) == (5, True)
    assert tx["payment_status"] == "refunded"
    assert tx["refunded_by"] == "emp_001"
    assert tx["refunded_at"]


def test_overselling_clamps_at_zero():
    store = _store_with_product(stock=1)
    tx = {"id": "tx1", "payment_status": "pending", "items": [{"id": "p1", "quantity": 3}]}
    apply_status(store, "m1", tx, "completed")
    assert _stock(store) == (0, False)


def test_set_transaction_status_never_reopens_settled_sales():
    store = _store_with_product()
    store.save_list(transactions_key("m1"), [{"id": "tx1", "payment_status": "pending", "items": []}])
    set_transaction_status(store, "m1", "tx1", "completed")
    set_transaction_status(store, "m1", "tx1", "failed")
    assert find_transaction(store, "m1", "tx1")["payment_status"] == "completed"
    assert set_transaction_status(store, "m1", "missing", "failed") is None
    assert set_transaction_status(store, "m1", None, "failed") is None
