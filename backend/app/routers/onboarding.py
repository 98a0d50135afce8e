from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_merchant_id
from ..store import BaseStore, get_store, merchant_key, new_id, now_iso

router = APIRouter(prefix="/onboarding-progress", tags=["onboarding"])

STEPS = ("admin_setup", "business_setup", "payment_setup", "qr_setup")
COMPLETED = "completed"


class OnboardingIn(BaseModel):
    admin_setup: Optional[bool] = None
    business_setup: Optional[bool] = None
    payment_setup: Optional[bool] = None
    qr_setup: Optional[bool] = None


def onboarding_key(merchant_id: str) -> str:
    return merchant_key("onboarding_progress", merchant_id)


def step_slug(step: str) -> str:
    return step.replace("_", "-")


def default_progress(merchant_id: str) -> dict:
    ts = now_iso()
    doc = {"id": new_id(), "merchant_id": merchant_id, "current_step": step_slug(STEPS[0])}
    for s in STEPS:
        doc[f"{s}_completed"] = False
        doc[f"{s}_completed_at"] = None
    doc.update({"onboarding_completed": False, "onboarding_completed_at": None, "created_at": ts, "updated_at": ts})
    return doc


def load_progress(store: BaseStore, merchant_id: str) -> dict:
    key = onboarding_key(merchant_id)
    with store.locked():
        doc = store.load_doc(key)
        if doc is None:
            doc = default_progress(merchant_id)
            store.set_item(key, doc)
        return doc


def apply_progress(doc: dict, updates: dict) -> dict:
    ts = now_iso()
    for step in STEPS:
        done = updates.get(step)
        if done is None:
            continue
        if done and not doc.get(f"{step}_completed_at"):
            doc[f"{step}_completed_at"] = ts
        doc[f"{step}_completed"] = bool(done)

    pending = [s for s in STEPS if not doc.get(f"{s}_completed")]
    if pending:
        doc["current_step"] = step_slug(pending[0])
        doc["onboarding_completed"] = False
    else:
        doc["current_step"] = COMPLETED
        if not doc.get("onboarding_completed"):
            doc["onboarding_completed"] = True
            doc["onboarding_completed_at"] = ts
    doc["updated_at"] = ts
    return doc


@router.get("")
def get_progress(merchant_id: str = Depends(get_merchant_id)):
    return {"progress": load_progress(get_store(), merchant_id)}


@router.put("")
def update_progress(data: OnboardingIn, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    with store.locked():
        doc = apply_progress(load_progress(store, merchant_id), data.model_dump(exclude_unset=True))
        store.set_item(onboarding_key(merchant_id), doc)
    return {"progress": doc}
