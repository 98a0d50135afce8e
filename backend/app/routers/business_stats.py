from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Body, Depends

from ..deps import get_merchant_id
from ..sales import money, products_key, transactions_key
from ..store import BaseStore, get_store, merchant_key, now_iso
from .employees import employees_key

router = APIRouter(prefix="/business-stats", tags=["business-stats"])


def business_setup_key(merchant_id: str) -> str:
    return merchant_key("business_setup", merchant_id)


def compute_stats(store: BaseStore, merchant_id: str, today=None) -> dict[str, Any]:
    today = today or datetime.now(timezone.utc).date().isoformat()
    txs = store.load_list(transactions_key(merchant_id))
    completed = [t for t in txs if t.get("payment_status") == "completed"]
    todays = [t for t in completed if (t.get("completed_at") or t.get("created_at") or "").startswith(today)]
    employees = store.load_list(employees_key(merchant_id))
    return {
        "todays_sales": sum((money(t.get("total")) for t in todays), Decimal("0")),
        "transactions": len(todays),
        "products": len(store.load_list(products_key(merchant_id))),
        "employees": sum(1 for e in employees if e.get("status") == "active"),
        "total_transactions": len(txs),
        "total_revenue": sum((money(t.get("total")) for t in completed), Decimal("0")),
        "business_setup": store.get_item(business_setup_key(merchant_id)),
    }


@router.get("")
def get_business_stats(merchant_id: str = Depends(get_merchant_id)):
    return {"stats": compute_stats(get_store(), merchant_id)}


@router.put("")
def save_business_setup(setup: dict[str, Any] = Body(...), merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    store.set_item(business_setup_key(merchant_id), {**setup, "updated_at": now_iso()})
    return {"stats": compute_stats(store, merchant_id)}
