from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .. import feature_flags as ff
from ..deps import get_merchant_id
from ..logs import json_log
from ..store import get_store

router = APIRouter(prefix="/feature-flags", tags=["feature-flags"])


class FlagUpdate(BaseModel):
    enabled: bool


@router.get("")
def list_flags(category: Optional[str] = None, merchant_id: str = Depends(get_merchant_id)):
    if category and category not in ff.CATEGORIES:
        raise HTTPException(status_code=400, detail=f"unknown category: {category}")
    store = get_store()
    flags = ff.list_flags(store, merchant_id, category)
    return {"flags": flags, "stats": ff.stats(ff.list_flags(store, merchant_id))}


@router.get("/{key}")
def get_flag(key: str, merchant_id: str = Depends(get_merchant_id)):
    flag = ff.get_flag(get_store(), merchant_id, key)
    if flag is None:
        raise HTTPException(status_code=404, detail="feature flag not found")
    return {"flag": flag, "effective": ff.is_enabled(flag)}


@router.patch("/{key}")
def update_flag(key: str, data: FlagUpdate, merchant_id: str = Depends(get_merchant_id)):
    try:
        flag = ff.set_enabled(get_store(), merchant_id, key, data.enabled)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    if flag is None:
        raise HTTPException(status_code=404, detail="feature flag not found")
    json_log("info", "feature_flag.updated", merchant_id=merchant_id, key=flag["key"], enabled=flag["enabled"])
    return {"flag": flag, "effective": ff.is_enabled(flag)}
