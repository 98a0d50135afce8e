from decimal import Decimal
from typing import Optional

from fastapi import HTTPException


def tender_change(total: Decimal, amount_tendered: Optional[Decimal], detail: str = "amount tendered is less than total") -> Optional[Decimal]:
    if amount_tendered is None:
        return None
    if amount_tendered < total:
        raise HTTPException(status_code=400, detail=detail)
    return (amount_tendered - total).quantize(Decimal("0.01"))


def assert_refundable(current_status: str, detail: str = "only completed transactions can be refunded"):
    if current_status != "completed":
        raise HTTPException(status_code=400, detail=detail)
