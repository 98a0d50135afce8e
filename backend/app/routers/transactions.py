from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..deps import get_merchant_id
from ..logs import json_log
from ..payment_guards import tender_change
from ..sales import apply_status, transactions_key
from ..store import get_store, new_id, now_iso
from ..validation import NonEmpty, PaymentMethod, PaymentStatus

router = APIRouter(prefix="/transactions", tags=["transactions"])


class TransactionItem(BaseModel):
    id: str
    name: str
    price: Decimal = Field(ge=0)
    quantity: int = Field(gt=0)
    category: Optional[str] = None
    emoji: Optional[str] = None


class TransactionIn(BaseModel):
    items: List[TransactionItem] = Field(default_factory=list)
    total: Decimal = Field(ge=0)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    employee_id: NonEmpty
    customer_id: Optional[str] = None
    customer_address: Optional[str] = None
    amount_tendered: Optional[Decimal] = Field(default=None, ge=0)


class TransactionUpdate(BaseModel):
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    customer_id: Optional[str] = None
    customer_address: Optional[str] = None
    refunded_by: Optional[str] = None
    refunded_at: Optional[str] = None


@router.get("")
def list_transactions(
    status: Optional[str] = None,
    payment_method: Optional[str] = None,
    employee_id: Optional[str] = None,
    merchant_id: str = Depends(get_merchant_id),
):
    rows = get_store().load_list(transactions_key(merchant_id))
    if status:
        rows = [t for t in rows if t.get("payment_status") == status.strip().lower()]
    if payment_method:
        rows = [t for t in rows if t.get("payment_method") == payment_method.strip().lower()]
    if employee_id:
        rows = [t for t in rows if t.get("employee_id") == employee_id]
    rows.sort(key=lambda t: t.get("created_at") or "", reverse=True)
    return {"transactions": rows}


@router.post("")
def create_transaction(data: TransactionIn, merchant_id: str = Depends(get_merchant_id)):
    change = None
    if data.payment_method == "cash":
        change = tender_change(data.total, data.amount_tendered)

    store = get_store()
    key = transactions_key(merchant_id)
    tx = {
        "id": new_id(),
        "merchant_id": merchant_id,
        **data.model_dump(exclude={"payment_status"}),
        "payment_status": "pending",
        "change": change,
        "refunded_by": None,
        "refunded_at": None,
        "created_at": now_iso(),
        "completed_at": None,
        "stock_applied": False,
    }
    with store.locked():
        if data.payment_status != "pending":
            apply_status(store, merchant_id, tx, data.payment_status)
        rows = store.load_list(key)
        rows.append(tx)
        store.save_list(key, rows)
    json_log(
        "info",
        "transaction.created",
        merchant_id=merchant_id,
        transaction_id=tx["id"],
        payment_method=tx["payment_method"],
        status=tx["payment_status"],
        total=tx["total"],
    )
    return {"transaction": tx}


@router.patch("/{transaction_id}")
def update_transaction(transaction_id: str, data: TransactionUpdate, merchant_id: str = Depends(get_merchant_id)):
    patch = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    status = patch.pop("payment_status", None)
    refunded_by = patch.pop("refunded_by", None)
    refunded_at = patch.pop("refunded_at", None)

    store = get_store()
    key = transactions_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        tx = next((t for t in rows if t.get("id") == transaction_id), None)
        if tx is None:
            raise HTTPException(status_code=404, detail="transaction not found")
        tx.update(patch)
        if status:
            apply_status(store, merchant_id, tx, status, refunded_by=refunded_by, refunded_at=refunded_at)
        store.save_list(key, rows)
    if status:
        json_log("info", "transaction.status", merchant_id=merchant_id, transaction_id=transaction_id, status=status)
    return {"transaction": tx}
