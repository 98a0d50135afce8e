from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from .. import lightning as ln
from ..crypto import LIGHTNING_INVOICE_RE
from ..deps import get_merchant_id
from ..errors import BitAgoraError, BitAgoraErrorType
from ..exchange import exchange_service
from ..logs import json_log
from ..sales import set_transaction_status
from ..store import BaseStore, get_store
from .payment_settings import load_payment_settings

router = APIRouter(prefix="/lightning", tags=["lightning"])


class InvoiceIn(BaseModel):
    amount: Decimal = Field(gt=0)
    description: Optional[str] = None
    transaction_id: Optional[str] = None


class WebhookIn(BaseModel):
    invoice_id: Optional[str] = None
    payment_hash: Optional[str] = None
    paid: bool = True
    preimage: Optional[str] = None
    reason: Optional[str] = None


def invoice_for_address(
    store: BaseStore,
    merchant_id: str,
    address: Optional[str],
    amount_usd: Decimal,
    description: Optional[str] = None,
    transaction_id: Optional[str] = None,
) -> dict:
    conv = exchange_service.usd_to_sats(amount_usd)
    if not conv.get("success"):
        raise BitAgoraError(BitAgoraErrorType.VALIDATION_ERROR, conv.get("error") or "amount too small")
    if address and LIGHTNING_INVOICE_RE.match(address):
        # A static bolt11 configured as the wallet cannot be re-issued per amount; pass it through.
        address = None
    return ln.generate_invoice(
        store,
        merchant_id,
        address,
        amount_usd,
        conv["crypto_amount"],
        description=description,
        transaction_id=transaction_id,
    )


@router.post("/generate-invoice")
def generate_invoice(data: InvoiceIn, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    settings_doc = load_payment_settings(store, merchant_id) or {}
    address = settings_doc.get("lightning_wallet_address")
    invoice = invoice_for_address(store, merchant_id, address, data.amount, data.description, data.transaction_id)
    json_log("info", "lightning.invoice", merchant_id=merchant_id, invoice_id=invoice["id"], fallback=invoice["fallback"])
    return {"invoice": ln.status_view(invoice)}


@router.get("/status/{invoice_id}")
def invoice_status(invoice_id: str, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    invoice = ln.find_invoice(store, merchant_id, invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="invoice not found")
    invoice = ln.refresh_status(store, merchant_id, invoice)
    if invoice.get("state") == "PAID":
        set_transaction_status(store, merchant_id, invoice.get("transaction_id"), "completed")
    return {"invoice": ln.status_view(invoice)}


@router.post("/webhook")
def webhook(data: WebhookIn, merchant_id: str = Depends(get_merchant_id)):
    ref = data.invoice_id or data.payment_hash
    if not ref:
        raise HTTPException(status_code=400, detail="invoice_id or payment_hash is required")
    store = get_store()
    invoice = ln.find_invoice(store, merchant_id, ref)
    if invoice is None:
        raise HTTPException(status_code=404, detail="invoice not found")
    if data.paid:
        invoice = ln.mark_paid(store, merchant_id, invoice, data.preimage)
        set_transaction_status(store, merchant_id, invoice.get("transaction_id"), "completed")
    else:
        invoice = ln.mark_failed(store, merchant_id, invoice, data.reason or "payment failed")
        set_transaction_status(store, merchant_id, invoice.get("transaction_id"), "failed")
    json_log("info", "lightning.webhook", merchant_id=merchant_id, invoice_id=invoice["id"], state=invoice["state"])
    return {"ok": True, "invoice": ln.status_view(invoice)}


@router.get("/webhook")
def webhook_health():
    return {"ok": True, "service": "lightning-webhook"}


@router.get("/analytics")
def analytics(window_hours: float = 24, merchant_id: str = Depends(get_merchant_id)):
    if window_hours <= 0:
        raise HTTPException(status_code=400, detail="window_hours must be positive")
    events = ln.load_events(get_store(), merchant_id)
    return {"metrics": ln.compute_metrics(events, window_hours)}
