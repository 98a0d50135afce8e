from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..crypto import check_amount, currency_info, is_supported, normalize_type, require_valid_address, validate_address
from ..deps import get_merchant_id
from ..errors import BitAgoraError, BitAgoraErrorType
from ..exchange import exchange_service, format_crypto_amount
from ..qr import data_url, payment_uri, render_png_base64
from ..store import BaseStore, get_store
from ..validation import CryptoType
from .lightning import invoice_for_address
from .payment_settings import load_payment_settings

router = APIRouter(prefix="/crypto", tags=["crypto"])

# crypto type -> (accept flag, address field)
WALLET_FIELDS = {
    "bitcoin": ("accept_bitcoin", "bitcoin_wallet_address"),
    "lightning": ("accept_bitcoin_lightning", "lightning_wallet_address"),
    "usdt_ethereum": ("accept_usdt_ethereum", "usdt_ethereum_wallet_address"),
    "usdt_tron": ("accept_usdt_tron", "usdt_tron_wallet_address"),
}


class ValidateAddressIn(BaseModel):
    address: str
    crypto_type: CryptoType
    network: Optional[str] = None


class ConvertIn(BaseModel):
    amount_usd: Decimal = Field(gt=0)
    crypto_type: CryptoType


class QRIn(BaseModel):
    crypto_type: CryptoType
    amount_usd: Decimal = Field(gt=0)
    include_image: bool = False
    transaction_id: Optional[str] = None


def merchant_wallet(store: BaseStore, merchant_id: str, crypto_type: str) -> str:
    kind = normalize_type(crypto_type)
    if kind not in WALLET_FIELDS:
        raise BitAgoraError(BitAgoraErrorType.CRYPTO_ERROR, f"cryptocurrency not supported: {crypto_type}")
    flag, field = WALLET_FIELDS[kind]
    settings_doc = load_payment_settings(store, merchant_id) or {}
    if not settings_doc.get(flag):
        raise BitAgoraError(BitAgoraErrorType.CRYPTO_ERROR, f"{kind} payments are not enabled", {"crypto_type": kind})
    return require_valid_address(settings_doc.get(field), kind)


@router.post("/validate-address")
def validate(data: ValidateAddressIn):
    return {"validation": validate_address(data.address, data.crypto_type, data.network)}


@router.get("/currency-info/{crypto_type}")
def get_currency_info(crypto_type: str):
    return {"crypto_type": normalize_type(crypto_type), "supported": is_supported(crypto_type), "info": currency_info(crypto_type)}


@router.get("/rates")
def get_rates():
    rates = exchange_service.get_rates()
    return {"rates": rates, "source": exchange_service.source}


@router.post("/convert")
def convert(data: ConvertIn):
    kind = normalize_type(data.crypto_type)
    if not is_supported(kind):
        raise BitAgoraError(BitAgoraErrorType.VALIDATION_ERROR, f"cryptocurrency not supported: {data.crypto_type}")
    res = exchange_service.convert(data.amount_usd, kind)
    if res.get("success"):
        symbol = "SATS" if kind == "lightning" else currency_info(kind)["symbol"]
        res["display"] = format_crypto_amount(res["crypto_amount"], symbol)
    return {"crypto_type": kind, "amount_usd": data.amount_usd, **res}


@router.post("/qr")
def generate_qr(data: QRIn, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    kind = normalize_type(data.crypto_type)
    if kind != "bitcoin":
        check_amount(kind, data.amount_usd)
    address = merchant_wallet(store, merchant_id, kind)

    out = {"crypto_type": kind, "amount_usd": data.amount_usd, "address": address}
    if kind == "lightning":
        invoice = invoice_for_address(store, merchant_id, address, data.amount_usd, transaction_id=data.transaction_id)
        out.update({"invoice_id": invoice["id"], "payment_request": invoice["payment_request"], "crypto_amount": invoice["amount_sats"]})
        uri = payment_uri(kind, invoice["payment_request"])
    else:
        conv = exchange_service.convert(data.amount_usd, kind)
        if not conv.get("success"):
            raise BitAgoraError(BitAgoraErrorType.VALIDATION_ERROR, conv.get("error") or "conversion failed")
        if kind == "bitcoin":
            check_amount(kind, conv["crypto_amount"])
        out.update({"crypto_amount": conv["crypto_amount"], "formatted_amount": conv["formatted_amount"], "exchange_rate": conv.get("exchange_rate")})
        uri = payment_uri(kind, address, conv["crypto_amount"])

    out["qr_content"] = uri
    if data.include_image:
        out["qr_image"] = data_url(render_png_base64(uri))
    return out
