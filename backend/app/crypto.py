"""
Address validation and currency metadata for the payment rails BitAgora accepts:
Bitcoin on-chain, Lightning, and USDT on Ethereum or Tron. Nothing else.
"""
import re
from decimal import Decimal
from typing import Any, Optional

from .config import settings
from .errors import BitAgoraError, BitAgoraErrorType

BITCOIN_RE = re.compile(r"^(bc1|[13])[a-zA-HJ-NP-Z0-9]{25,62}$")
BITCOIN_TESTNET_RE = re.compile(r"^(tb1|[2mn])[a-zA-HJ-NP-Z0-9]{25,62}$")
USDT_ETHEREUM_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
USDT_TRON_RE = re.compile(r"^T[A-Za-z1-9]{33}$")
LIGHTNING_INVOICE_RE = re.compile(r"^ln(bc|tb)[a-z0-9]+$")
LIGHTNING_ADDRESS_RE = re.compile(r"^[\w\.-]+@[\w\.-]+\.\w+$")

SUPPORTED_TYPES = ("bitcoin", "lightning", "usdt_ethereum", "usdt_tron")

_ALIASES = {"btc": "bitcoin"}

CURRENCY_INFO = {
    "bitcoin": {"symbol": "BTC", "name": "Bitcoin", "network": "Bitcoin"},
    "lightning": {"symbol": "BTC", "name": "Bitcoin Lightning", "network": "Lightning Network"},
    "usdt_ethereum": {"symbol": "USDT", "name": "Tether (Ethereum)", "network": "Ethereum"},
    "usdt_tron": {"symbol": "USDT", "name": "Tether (Tron)", "network": "Tron"},
}

# Per-payment limits. Lightning and USDT are in USD, on-chain bitcoin in BTC.
AMOUNT_LIMITS = {
    "lightning": (Decimal("0.01"), Decimal("1000")),
    "bitcoin": (Decimal("0.0001"), Decimal("10")),
    "usdt": (Decimal("0.01"), Decimal("10000")),
}

# Transaction payment_method <-> crypto type.
PAYMENT_METHOD_TYPES = {
    "bitcoin": "bitcoin",
    "lightning": "lightning",
    "usdt-eth": "usdt_ethereum",
    "usdt-tron": "usdt_tron",
}


def normalize_type(crypto_type: Optional[str]) -> str:
    t = (crypto_type or "").strip().lower()
    return _ALIASES.get(t, t)


def is_supported(crypto_type: Optional[str]) -> bool:
    return normalize_type(crypto_type) in SUPPORTED_TYPES


def validate_address(address: Optional[str], crypto_type: Optional[str], network: Optional[str] = None) -> dict[str, Any]:
    kind = normalize_type(crypto_type)
    if kind not in SUPPORTED_TYPES:
        return {
            "is_valid": False,
            "error": f"cryptocurrency not supported: {crypto_type}",
            "address_type": "Unsupported",
        }
    if not address or not isinstance(address, str):
        return {"is_valid": False, "error": "address is required", "address_type": None}
    address = address.strip()
    net = (network or settings.bitcoin_network or "mainnet").lower()

    if kind == "bitcoin":
        pattern = BITCOIN_TESTNET_RE if net == "testnet" else BITCOIN_RE
        ok = bool(pattern.match(address))
        details = "Valid Bitcoin address format" if ok else "Invalid Bitcoin address format"
        return {"is_valid": ok, "error": None if ok else details, "address_type": "Bitcoin", "details": details}
    if kind == "usdt_ethereum":
        ok = bool(USDT_ETHEREUM_RE.match(address))
        details = "Valid USDT (Ethereum) address format" if ok else "Invalid USDT (Ethereum) address format"
        return {"is_valid": ok, "error": None if ok else details, "address_type": "USDT (Ethereum)", "details": details}
    if kind == "usdt_tron":
        ok = bool(USDT_TRON_RE.match(address))
        details = "Valid USDT (Tron) address format" if ok else "Invalid USDT (Tron) address format"
        return {"is_valid": ok, "error": None if ok else details, "address_type": "USDT (Tron)", "details": details}
    # lightning
    if LIGHTNING_INVOICE_RE.match(address):
        details = "Valid Lightning invoice format"
        return {"is_valid": True, "error": None, "address_type": "Lightning", "details": details, "format": "invoice"}
    if LIGHTNING_ADDRESS_RE.match(address):
        details = "Valid Lightning address format"
        return {"is_valid": True, "error": None, "address_type": "Lightning", "details": details, "format": "address"}
    details = "Invalid Lightning format. Use either invoice (lnbc...) or address (user@domain.com)"
    return {"is_valid": False, "error": details, "address_type": "Lightning", "details": details}


def currency_info(crypto_type: Optional[str]) -> dict[str, str]:
    info = CURRENCY_INFO.get(normalize_type(crypto_type))
    if info is None:
        return {"symbol": "UNKNOWN", "name": "Unsupported Cryptocurrency", "network": "Not Supported"}
    return dict(info)


def limits_for(crypto_type: Optional[str]) -> tuple[Decimal, Decimal]:
    kind = normalize_type(crypto_type)
    if kind.startswith("usdt"):
        return AMOUNT_LIMITS["usdt"]
    if kind in AMOUNT_LIMITS:
        return AMOUNT_LIMITS[kind]
    raise BitAgoraError(BitAgoraErrorType.VALIDATION_ERROR, f"cryptocurrency not supported: {crypto_type}")


def limit_unit(crypto_type: Optional[str]) -> str:
    return "BTC" if normalize_type(crypto_type) == "bitcoin" else "USD"


def check_amount(crypto_type: Optional[str], amount: Decimal) -> None:
    low, high = limits_for(crypto_type)
    if amount < low or amount > high:
        unit = limit_unit(crypto_type)
        raise BitAgoraError(
            BitAgoraErrorType.VALIDATION_ERROR,
            f"amount must be between {low} and {high} {unit}",
            {"amount": str(amount), "unit": unit, "min": str(low), "max": str(high)},
        )


def require_valid_address(address: Optional[str], crypto_type: str) -> str:
    res = validate_address(address, crypto_type)
    if not res["is_valid"]:
        raise BitAgoraError(BitAgoraErrorType.CRYPTO_ERROR, res.get("error") or "invalid address", {"crypto_type": crypto_type})
    return address.strip()
