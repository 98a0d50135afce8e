from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field

from ..deps import get_merchant_id
from ..store import get_store, merchant_key, new_id, now_iso
from ..validation import CurrencyCode
from ..vault import encrypt_secret

router = APIRouter(prefix="/qr-providers", tags=["qr-providers"])

CUSTOM_REGION = "Custom"


class QRProviderIn(BaseModel):
    id: Optional[str] = None
    provider_name: str = ""
    provider_region: str = ""
    provider_type: str = Field(default="regional", pattern=r"^(regional|custom)$")
    custom_name: Optional[str] = None
    custom_description: Optional[str] = None
    enabled: bool = False
    qr_code_file_path: Optional[str] = None
    qr_code_image_data: Optional[str] = None
    percentage_fee: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    fixed_fee: Decimal = Field(default=Decimal("0"), ge=0)
    currency: CurrencyCode = "USD"
    api_endpoint: Optional[str] = None
    api_key: Optional[str] = None
    webhook_url: Optional[str] = None


def qr_providers_key(merchant_id: str) -> str:
    return merchant_key("qr_providers", merchant_id)


def public_provider(p: dict) -> dict:
    out = {k: v for k, v in p.items() if k != "api_key_enc"}
    out["has_api_key"] = bool(p.get("api_key_enc"))
    return out


def _fee(*candidates, upper: Optional[Decimal] = None) -> float:
    for raw in candidates:
        if raw is None or raw == "":
            continue
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            raise HTTPException(status_code=400, detail=f"invalid fee value: {raw}") from None
        if not value.is_finite() or value < 0 or (upper is not None and value > upper):
            raise HTTPException(status_code=400, detail=f"fee out of range: {raw}")
        return float(value)
    return 0.0


@router.get("")
def list_providers(merchant_id: str = Depends(get_merchant_id)):
    rows = get_store().load_list(qr_providers_key(merchant_id))
    return {"providers": [public_provider(p) for p in rows]}


@router.post("")
def save_provider(data: QRProviderIn, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    key = qr_providers_key(merchant_id)
    ts = now_iso()
    with store.locked():
        rows = store.load_list(key)
        prev = next((p for p in rows if data.id and p.get("id") == data.id), None) or {}
        rec = {
            **data.model_dump(exclude={"api_key"}),
            "id": data.id or new_id(),
            "merchant_id": merchant_id,
            "api_key_enc": encrypt_secret(data.api_key) if data.api_key else prev.get("api_key_enc"),
            "created_at": prev.get("created_at") or ts,
            "updated_at": ts,
        }
        rows = [p for p in rows if p.get("id") != rec["id"]]
        rows.append(rec)
        store.save_list(key, rows)
    return {"provider": public_provider(rec), "message": "qr provider saved"}


@router.put("")
def replace_configuration(config: dict[str, list[dict[str, Any]]] = Body(...), merchant_id: str = Depends(get_merchant_id)):
    """
    Bulk replace from the admin screen's region map:
      {"Argentina": [{"id", "name", "description", "enabled", "qr_code", "default_fee", "custom_fee", ...}], "Custom": [...]}

    Providers that keep their id keep their stored api key and created_at.
    """
    store = get_store()
    key = qr_providers_key(merchant_id)
    ts = now_iso()
    with store.locked():
        existing = {p.get("id"): p for p in store.load_list(key)}
        rows = []
        for region, providers in config.items():
            for p in providers or []:
                pid = p.get("id") or new_id()
                prev = existing.get(pid) or {}
                rows.append(
                    {
                        "id": pid,
                        "merchant_id": merchant_id,
                        "provider_name": p.get("name") or "",
                        "provider_region": region,
                        "provider_type": "custom" if region == CUSTOM_REGION else "regional",
                        "custom_name": p.get("name"),
                        "custom_description": p.get("description"),
                        "enabled": bool(p.get("enabled")),
                        "qr_code_file_path": f"qr-codes/{pid}.png" if p.get("qr_code") else prev.get("qr_code_file_path"),
                        "qr_code_image_data": p.get("qr_code_image_data") or prev.get("qr_code_image_data"),
                        "percentage_fee": _fee(p.get("custom_fee"), p.get("default_fee"), upper=Decimal("100")),
                        "fixed_fee": _fee(p.get("custom_fixed_fee"), p.get("fixed_fee")),
                        "currency": prev.get("currency") or "USD",
                        "api_endpoint": p.get("api_endpoint") or prev.get("api_endpoint"),
                        "api_key_enc": encrypt_secret(p["api_key"]) if p.get("api_key") else prev.get("api_key_enc"),
                        "webhook_url": p.get("webhook_url") or prev.get("webhook_url"),
                        "created_at": prev.get("created_at") or ts,
                        "updated_at": ts,
                    }
                )
        store.save_list(key, rows)
    return {"providers": [public_provider(p) for p in rows], "message": "qr configuration updated"}


@router.delete("/{provider_id}")
def delete_provider(provider_id: str, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    key = qr_providers_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        kept = [p for p in rows if p.get("id") != provider_id]
        if len(kept) == len(rows):
            raise HTTPException(status_code=404, detail="qr provider not found")
        store.save_list(key, kept)
    return {"ok": True}
