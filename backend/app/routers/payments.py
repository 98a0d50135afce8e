from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from .. import payment_status as ps
from ..crypto import PAYMENT_METHOD_TYPES, check_amount
from ..deps import get_merchant_id
from ..errors import BitAgoraError, BitAgoraErrorType
from ..exchange import exchange_service
from ..logs import json_log
from ..sales import find_transaction, money
from ..store import get_store
from ..validation import PaymentMethod
from .crypto import merchant_wallet
from .lightning import invoice_for_address

router = APIRouter(tags=["payments"])


class PaymentIn(BaseModel):
    transaction_id: str
    method: PaymentMethod
    amount_usd: Optional[Decimal] = Field(default=None, gt=0)
    timeout_seconds: Optional[int] = Field(default=None, gt=0, le=24 * 60 * 60)


class PaymentActionIn(BaseModel):
    action: str
    reason: Optional[str] = None


@router.post("/payments")
def create_payment(data: PaymentIn, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    tx = find_transaction(store, merchant_id, data.transaction_id)
    if tx is None:
        raise HTTPException(status_code=404, detail="transaction not found")
    if tx.get("payment_status") in {"completed", "refunded"}:
        raise HTTPException(status_code=409, detail="transaction already settled")
    amount = data.amount_usd if data.amount_usd is not None else money(tx.get("total"))
    if amount <= 0:
        raise HTTPException(status_code=400, detail="amount must be positive")

    kind = PAYMENT_METHOD_TYPES.get(data.method)
    fields: dict = {}
    if kind == "lightning":
        address = merchant_wallet(store, merchant_id, kind)
        invoice = invoice_for_address(store, merchant_id, address, amount, transaction_id=tx["id"])
        fields = {
            "crypto_amount": invoice["amount_sats"],
            "payment_request": invoice["payment_request"],
            "invoice_id": invoice["id"],
        }
    elif kind is not None:
        address = merchant_wallet(store, merchant_id, kind)
        conv = exchange_service.convert(amount, kind)
        if not conv.get("success"):
            raise BitAgoraError(BitAgoraErrorType.VALIDATION_ERROR, conv.get("error") or "conversion failed")
        check_amount(kind, conv["crypto_amount"] if kind == "bitcoin" else amount)
        fields = {"crypto_amount": conv["crypto_amount"], "address": address}

    payment = ps.new_payment(tx["id"], data.method, amount, timeout_seconds=data.timeout_seconds, **fields)
    ps.save_payment(store, merchant_id, payment)
    json_log("info", "payment.created", merchant_id=merchant_id, payment_id=payment["id"], method=data.method, amount_usd=amount)
    return {"payment": payment}


@router.get("/payment-status/{payment_id}")
def get_payment_status(payment_id: str, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    with store.locked():
        payment = ps.find_payment(store, merchant_id, payment_id)
        if payment is None:
            raise HTTPException(status_code=404, detail="payment not found")
        if ps.refresh_expiry(payment):
            ps.save_payment(store, merchant_id, payment)
            ps.sync_transaction(store, merchant_id, payment)
    return {"payment": payment}


@router.post("/payment-status/{payment_id}")
def update_payment_status(payment_id: str, data: PaymentActionIn, merchant_id: str = Depends(get_merchant_id)):
    if (data.action or "").strip().lower() not in ps.ACTIONS:
        raise HTTPException(status_code=400, detail="invalid action")
    store = get_store()
    with store.locked():
        payment = ps.find_payment(store, merchant_id, payment_id)
        if payment is None:
            raise HTTPException(status_code=404, detail="payment not found")
        if ps.refresh_expiry(payment):
            ps.save_payment(store, merchant_id, payment)
            ps.sync_transaction(store, merchant_id, payment)
        if payment.get("status") in ps.TERMINAL:
            raise HTTPException(status_code=409, detail=f"payment already {payment['status']}")
        ps.apply_action(payment, data.action, data.reason)
        ps.save_payment(store, merchant_id, payment)
        ps.sync_transaction(store, merchant_id, payment)
    json_log("info", "payment.action", merchant_id=merchant_id, payment_id=payment_id, action=data.action, status=payment["status"])
    return {"payment": payment, "message": f"payment {data.action} action processed"}
