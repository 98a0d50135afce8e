from typing import Optional

from fastapi import Header

from .config import settings


def get_merchant_id(x_merchant_id: Optional[str] = Header(None, alias="X-Merchant-Id")) -> str:
    merchant_id = (x_merchant_id or "").strip()
    return merchant_id or settings.default_merchant_id
