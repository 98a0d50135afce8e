from fastapi import APIRouter, HTTPException

from ..config import settings
from ..logs import json_log
from ..store import KEY_PREFIX, get_store

router = APIRouter(prefix="/debug", tags=["debug"])


def _require_debug():
    if not settings.debug_enabled:
        raise HTTPException(status_code=404, detail="not found")


@router.post("/clear-all")
def clear_all():
    _require_debug()
    removed = get_store().clear()
    json_log("warning", "debug.clear_all", removed=removed)
    return {"ok": True, "removed": removed}


@router.get("/export")
def export_all():
    _require_debug()
    store = get_store()
    data = {}
    for key in store.keys(KEY_PREFIX):
        value = store.get_item(key)
        if isinstance(value, list):
            value = [{k: v for k, v in r.items() if not k.endswith(("_hash", "_enc", "_fingerprint"))} if isinstance(r, dict) else r for r in value]
        data[key] = value
    return {"keys": len(data), "data": data}
