from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..deps import get_merchant_id
from ..sales import products_key
from ..store import get_store, new_id, now_iso
from ..validation import NonEmpty

router = APIRouter(prefix="/products", tags=["products"])


class ProductIn(BaseModel):
    name: NonEmpty
    price: Decimal = Field(ge=0)
    category: NonEmpty
    emoji: NonEmpty
    description: Optional[str] = None
    in_stock: bool = True
    stock_quantity: int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[NonEmpty] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    category: Optional[NonEmpty] = None
    emoji: Optional[NonEmpty] = None
    description: Optional[str] = None
    in_stock: Optional[bool] = None
    stock_quantity: Optional[int] = Field(default=None, ge=0)


@router.get("")
def list_products(
    category: Optional[str] = None,
    in_stock: Optional[bool] = None,
    merchant_id: str = Depends(get_merchant_id),
):
    rows = get_store().load_list(products_key(merchant_id))
    if category:
        rows = [p for p in rows if (p.get("category") or "").lower() == category.strip().lower()]
    if in_stock is not None:
        rows = [p for p in rows if bool(p.get("in_stock")) == in_stock]
    return {"products": rows}


@router.post("")
def create_product(data: ProductIn, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    key = products_key(merchant_id)
    ts = now_iso()
    product = {"id": new_id(), "merchant_id": merchant_id, **data.model_dump(), "created_at": ts, "updated_at": ts}
    with store.locked():
        rows = store.load_list(key)
        rows.append(product)
        store.save_list(key, rows)
    return {"product": product}


@router.patch("/{product_id}")
def update_product(product_id: str, data: ProductUpdate, merchant_id: str = Depends(get_merchant_id)):
    patch = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None or k == "description"}
    store = get_store()
    key = products_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        product = next((p for p in rows if p.get("id") == product_id), None)
        if product is None:
            raise HTTPException(status_code=404, detail="product not found")
        product.update(patch)
        if "stock_quantity" in patch and "in_stock" not in patch:
            product["in_stock"] = patch["stock_quantity"] > 0
        product["updated_at"] = now_iso()
        store.save_list(key, rows)
    return {"product": product}


@router.delete("/{product_id}")
def delete_product(product_id: str, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    key = products_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        kept = [p for p in rows if p.get("id") != product_id]
        if len(kept) == len(rows):
            raise HTTPException(status_code=404, detail="product not found")
        store.save_list(key, kept)
    return {"ok": True}
