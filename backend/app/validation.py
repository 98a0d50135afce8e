from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _strip_str(v):
    if v is None:
        return v
    return str(v).strip()


CurrencyCode = Annotated[str, BeforeValidator(_to_upper_str), StringConstraints(pattern=r"^[A-Z]{3}$")]

PaymentMethod = Annotated[
    Literal["cash", "card", "bitcoin", "lightning", "usdt-eth", "usdt-tron", "qr-code", "stripe"],
    BeforeValidator(_to_lower_str),
]
PaymentStatus = Annotated[Literal["pending", "completed", "failed", "refunded"], BeforeValidator(_to_lower_str)]

Role = Annotated[Literal["admin", "manager", "employee"], BeforeValidator(_to_lower_str)]
EmployeeStatus = Annotated[Literal["active", "inactive"], BeforeValidator(_to_lower_str)]
Environment = Annotated[Literal["sandbox", "production"], BeforeValidator(_to_lower_str)]

Pin = Annotated[str, BeforeValidator(_strip_str), StringConstraints(pattern=r"^\d{4}$")]
Email = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"),
]
NonEmpty = Annotated[str, BeforeValidator(_strip_str), StringConstraints(min_length=1, max_length=200)]

TaxType = Annotated[Literal["VAT", "SALES_TAX", "GST", "IVA"], BeforeValidator(_to_upper_str)]
RoundingMethod = Annotated[Literal["round", "ceil", "floor"], BeforeValidator(_to_lower_str)]

# Crypto types accepted by the payment helpers; "btc" is an alias of "bitcoin".
CryptoType = Annotated[str, BeforeValidator(_to_lower_str), StringConstraints(min_length=1, max_length=32)]
