from decimal import Decimal
from typing import Iterable, Optional

from .logs import json_log
from .payment_guards import assert_refundable
from .store import BaseStore, merchant_key, now_iso


def transactions_key(merchant_id: str) -> str:
    return merchant_key("transactions", merchant_id)


def products_key(merchant_id: str) -> str:
    return merchant_key("products", merchant_id)


def apply_stock(store: BaseStore, merchant_id: str, items: Iterable[dict], sign: int) -> list[str]:
    """
    Adjust stock for the given line items: sign=-1 sells, sign=+1 restocks.
    Quantities never go below zero and `in_stock` tracks whether anything is left.
    Returns the ids of products that were touched.
    """
    wanted: dict[str, int] = {}
    for it in items:
        pid = it.get("id")
        if not pid:
            continue
        wanted[pid] = wanted.get(pid, 0) + int(it.get("quantity") or 0)
    if not wanted:
        return []

    key = products_key(merchant_id)
    touched = []
    with store.locked():
        products = store.load_list(key)
        for p in products:
            qty = wanted.get(p.get("id"))
            if qty is None:
                continue
            current = int(p.get("stock_quantity") or 0)
            new_qty = max(0, current + sign * qty)
            if sign < 0 and current < qty:
                json_log("warning", "inventory.oversold", merchant_id=merchant_id, product_id=p["id"], stock=current, sold=qty)
            p["stock_quantity"] = new_qty
            p["in_stock"] = new_qty > 0
            p["updated_at"] = now_iso()
            touched.append(p["id"])
        store.save_list(key, products)
    return touched


def find_transaction(store: BaseStore, merchant_id: str, transaction_id: str) -> Optional[dict]:
    for tx in store.load_list(transactions_key(merchant_id)):
        if tx.get("id") == transaction_id:
            return tx
    return None


def apply_status(store: BaseStore, merchant_id: str, tx: dict, status: str, *, refunded_by: Optional[str] = None, refunded_at: Optional[str] = None) -> dict:
    """Mutates `tx` in place for a status change; caller persists it."""
    current = tx.get("payment_status")
    if status == current:
        return tx
    if status == "refunded":
        assert_refundable(current)
        tx["refunded_at"] = refunded_at or now_iso()
        if refunded_by:
            tx["refunded_by"] = refunded_by
        if tx.get("stock_applied"):
            apply_stock(store, merchant_id, tx.get("items") or [], +1)
            tx["stock_applied"] = False
    elif status == "completed":
        tx["completed_at"] = tx.get("completed_at") or now_iso()
        if not tx.get("stock_applied"):
            apply_stock(store, merchant_id, tx.get("items") or [], -1)
            tx["stock_applied"] = True
    tx["payment_status"] = status
    return tx


def set_transaction_status(store: BaseStore, merchant_id: str, transaction_id: Optional[str], status: str) -> Optional[dict]:
    if not transaction_id:
        return None
    key = transactions_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        for tx in rows:
            if tx.get("id") != transaction_id:
                continue
            if tx.get("payment_status") in {"completed", "refunded"} and status != "refunded":
                return tx
            apply_status(store, merchant_id, tx, status)
            store.save_list(key, rows)
            json_log("info", "transaction.status", merchant_id=merchant_id, transaction_id=transaction_id, status=status)
            return tx
    json_log("warning", "transaction.missing", merchant_id=merchant_id, transaction_id=transaction_id)
    return None


def money(v) -> Decimal:
    return Decimal(str(v or 0)).quantize(Decimal("0.01"))
