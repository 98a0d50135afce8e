from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..crypto import validate_address
from ..deps import get_merchant_id
from ..logs import json_log
from ..store import BaseStore, get_store, merchant_key, new_id, now_iso
from ..validation import CurrencyCode, Environment, NonEmpty
from ..vault import decrypt_secret, encrypt_secret, mask_secret

router = APIRouter(tags=["payment-settings"])

# accept flag -> (address field, crypto type)
CRYPTO_METHODS = {
    "accept_bitcoin": ("bitcoin_wallet_address", "bitcoin"),
    "accept_bitcoin_lightning": ("lightning_wallet_address", "lightning"),
    "accept_usdt_ethereum": ("usdt_ethereum_wallet_address", "usdt_ethereum"),
    "accept_usdt_tron": ("usdt_tron_wallet_address", "usdt_tron"),
}

SECRET_FIELDS = ("api_key", "client_id", "application_id", "webhook_secret")

DEFAULT_FEES = (
    ("cash", "0", "0"),
    ("bitcoin", "0", "0"),
    ("bitcoin_lightning", "0", "0"),
    ("usdt_ethereum", "0", "0"),
    ("usdt_tron", "0", "0"),
    ("stripe", "2.9", "0.30"),
    ("paypal", "3.5", "0.30"),
    ("square", "2.6", "0.10"),
)


class PaymentSettingsIn(BaseModel):
    accept_cash: Optional[bool] = None
    accept_cards: Optional[bool] = None
    accept_bitcoin: Optional[bool] = None
    accept_bitcoin_lightning: Optional[bool] = None
    accept_usdt_ethereum: Optional[bool] = None
    accept_usdt_tron: Optional[bool] = None
    bitcoin_wallet_address: Optional[str] = None
    lightning_wallet_address: Optional[str] = None
    usdt_ethereum_wallet_address: Optional[str] = None
    usdt_tron_wallet_address: Optional[str] = None
    stripe_enabled: Optional[bool] = None
    paypal_enabled: Optional[bool] = None
    square_enabled: Optional[bool] = None
    require_signature: Optional[bool] = None
    require_id: Optional[bool] = None
    auto_settle: Optional[bool] = None


class CredentialsIn(BaseModel):
    processor_name: NonEmpty
    environment: Environment = "sandbox"
    active: bool = True
    api_key: Optional[str] = None
    client_id: Optional[str] = None
    application_id: Optional[str] = None
    webhook_secret: Optional[str] = None


class FeeIn(BaseModel):
    payment_method: NonEmpty
    percentage_fee: Decimal = Field(ge=0, le=100)
    fixed_fee: Decimal = Field(default=Decimal("0"), ge=0)
    currency: CurrencyCode = "USD"
    active: bool = True


class FeesIn(BaseModel):
    fees: List[FeeIn]


class QuoteIn(BaseModel):
    payment_method: NonEmpty
    amount: Decimal = Field(ge=0)


def payment_settings_key(merchant_id: str) -> str:
    return merchant_key("payment_settings", merchant_id)


def credentials_key(merchant_id: str) -> str:
    return merchant_key("payment_credentials", merchant_id)


def fees_key(merchant_id: str) -> str:
    return merchant_key("payment_fees", merchant_id)


def load_payment_settings(store: BaseStore, merchant_id: str) -> Optional[dict]:
    return store.load_doc(payment_settings_key(merchant_id))


# Settings

@router.get("/payment-settings")
def get_payment_settings(merchant_id: str = Depends(get_merchant_id)):
    doc = load_payment_settings(get_store(), merchant_id)
    if doc is None:
        return {"settings": None, "message": "no payment settings found"}
    return {"settings": doc}


@router.put("/payment-settings")
def save_payment_settings(data: PaymentSettingsIn, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    key = payment_settings_key(merchant_id)
    with store.locked():
        current = load_payment_settings(store, merchant_id) or {}
        patch = {k: (v.strip() if isinstance(v, str) else v) for k, v in data.model_dump(exclude_unset=True).items()}
        merged = {**current, **patch}
        for flag, (field, kind) in CRYPTO_METHODS.items():
            if not merged.get(flag):
                continue
            res = validate_address(merged.get(field), kind)
            if not res["is_valid"]:
                raise HTTPException(status_code=400, detail=f"{field}: {res.get('error') or 'invalid address'}")
        ts = now_iso()
        merged["id"] = current.get("id") or new_id()
        merged["merchant_id"] = merchant_id
        merged["created_at"] = current.get("created_at") or ts
        merged["updated_at"] = ts
        store.set_item(key, merged)
    json_log("info", "payment_settings.saved", merchant_id=merchant_id)
    return {"settings": merged}


# Credentials

def masked_credentials(rec: dict) -> dict:
    out = {k: v for k, v in rec.items() if not k.endswith("_enc")}
    for f in SECRET_FIELDS:
        token = rec.get(f"{f}_enc")
        out[f] = mask_secret(decrypt_secret(token)) if token else None
    return out


@router.get("/payment-credentials")
def list_credentials(merchant_id: str = Depends(get_merchant_id)):
    rows = get_store().load_list(credentials_key(merchant_id))
    return {"credentials": [masked_credentials(r) for r in rows]}


@router.post("/payment-credentials")
def upsert_credentials(data: CredentialsIn, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    key = credentials_key(merchant_id)
    name = data.processor_name.lower()
    ts = now_iso()
    with store.locked():
        rows = store.load_list(key)
        rec = next((r for r in rows if r.get("processor_name") == name), None)
        if rec is None:
            rec = {"id": new_id(), "merchant_id": merchant_id, "processor_name": name, "created_at": ts}
            rows.append(rec)
        rec["environment"] = data.environment
        rec["active"] = data.active
        for f in SECRET_FIELDS:
            value = getattr(data, f)
            # Omitted secrets keep their stored value.
            if value:
                rec[f"{f}_enc"] = encrypt_secret(value)
        rec["updated_at"] = ts
        store.save_list(key, rows)
    json_log("info", "payment_credentials.saved", merchant_id=merchant_id, processor=name)
    return {"credentials": masked_credentials(rec)}


@router.post("/payment-credentials/{processor}/test")
def check_credentials(processor: str, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    key = credentials_key(merchant_id)
    name = processor.strip().lower()
    with store.locked():
        rows = store.load_list(key)
        rec = next((r for r in rows if r.get("processor_name") == name), None)
        if rec is None:
            raise HTTPException(status_code=404, detail="credentials not found")
        ok = bool(rec.get("api_key_enc")) and bool(decrypt_secret(rec["api_key_enc"]))
        rec["last_tested"] = now_iso()
        rec["test_status"] = "success" if ok else "failed"
        store.save_list(key, rows)
    return {"processor_name": name, "test_status": rec["test_status"], "last_tested": rec["last_tested"]}


# Fees

def default_fees(merchant_id: str) -> list[dict]:
    ts = now_iso()
    return [
        {
            "id": new_id(),
            "merchant_id": merchant_id,
            "payment_method": method,
            "percentage_fee": float(pct),
            "fixed_fee": float(fixed),
            "currency": "USD",
            "active": True,
            "created_at": ts,
            "updated_at": ts,
        }
        for method, pct, fixed in DEFAULT_FEES
    ]


def load_fees(store: BaseStore, merchant_id: str) -> list[dict]:
    key = fees_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        if not rows:
            rows = default_fees(merchant_id)
            store.save_list(key, rows)
        return rows


def quote_fee(fee: Optional[dict], amount: Decimal) -> dict:
    if fee is None or not fee.get("active"):
        return {"fee": Decimal("0.00"), "net_amount": amount.quantize(Decimal("0.01"))}
    pct = Decimal(str(fee.get("percentage_fee") or 0))
    fixed = Decimal(str(fee.get("fixed_fee") or 0))
    total_fee = (amount * pct / 100 + fixed).quantize(Decimal("0.01")) if amount > 0 else Decimal("0.00")
    return {"fee": total_fee, "net_amount": (amount - total_fee).quantize(Decimal("0.01"))}


@router.get("/payment-fees")
def list_fees(merchant_id: str = Depends(get_merchant_id)):
    return {"fees": load_fees(get_store(), merchant_id)}


@router.put("/payment-fees")
def replace_fees(data: FeesIn, merchant_id: str = Depends(get_merchant_id)):
    methods = [f.payment_method.lower() for f in data.fees]
    if len(methods) != len(set(methods)):
        raise HTTPException(status_code=400, detail="duplicate payment_method in fees")
    store = get_store()
    key = fees_key(merchant_id)
    ts = now_iso()
    with store.locked():
        existing = {r.get("payment_method"): r for r in store.load_list(key)}
        rows = []
        for f in data.fees:
            method = f.payment_method.lower()
            prev = existing.get(method) or {}
            rows.append(
                {
                    "id": prev.get("id") or new_id(),
                    "merchant_id": merchant_id,
                    **f.model_dump(),
                    "payment_method": method,
                    "created_at": prev.get("created_at") or ts,
                    "updated_at": ts,
                }
            )
        store.save_list(key, rows)
    return {"fees": rows}


@router.post("/payment-fees/quote")
def quote(data: QuoteIn, merchant_id: str = Depends(get_merchant_id)):
    method = data.payment_method.lower()
    fee = next((f for f in load_fees(get_store(), merchant_id) if f.get("payment_method") == method), None)
    return {"payment_method": method, "amount": data.amount, **quote_fee(fee, data.amount)}
