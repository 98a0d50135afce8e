from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..deps import get_merchant_id
from ..store import get_store, merchant_key, new_id, now_iso
from ..validation import NonEmpty

router = APIRouter(prefix="/cart-sessions", tags=["cart-sessions"])


class CartSessionIn(BaseModel):
    employee_id: NonEmpty
    items: List[dict[str, Any]] = Field(default_factory=list)
    total: Decimal = Field(default=Decimal("0"), ge=0)


def cart_sessions_key(merchant_id: str) -> str:
    return merchant_key("cart_sessions", merchant_id)


@router.get("")
def get_cart_sessions(employee_id: Optional[str] = None, merchant_id: str = Depends(get_merchant_id)):
    rows = get_store().load_list(cart_sessions_key(merchant_id))
    if not employee_id:
        return {"cart_sessions": rows}
    session = next((s for s in rows if s.get("employee_id") == employee_id), None)
    if session is None:
        raise HTTPException(status_code=404, detail="cart session not found")
    return {"cart_session": session}


@router.post("")
@router.put("")
def save_cart_session(data: CartSessionIn, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    key = cart_sessions_key(merchant_id)
    ts = now_iso()
    session = {
        "id": new_id(),
        "merchant_id": merchant_id,
        **data.model_dump(),
        "created_at": ts,
        "updated_at": ts,
    }
    with store.locked():
        rows = [s for s in store.load_list(key) if s.get("employee_id") != data.employee_id]
        rows.append(session)
        store.save_list(key, rows)
    return {"cart_session": session}


@router.delete("")
def delete_cart_session(employee_id: Optional[str] = None, merchant_id: str = Depends(get_merchant_id)):
    if not (employee_id or "").strip():
        raise HTTPException(status_code=400, detail="employee_id is required")
    store = get_store()
    key = cart_sessions_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        kept = [s for s in rows if s.get("employee_id") != employee_id]
        store.save_list(key, kept)
    return {"ok": True, "deleted": len(rows) - len(kept)}
