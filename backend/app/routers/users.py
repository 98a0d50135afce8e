from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..logs import json_log
from ..security import hash_password, hash_pin
from ..store import KEY_PREFIX, get_store, new_id, now_iso
from ..validation import Email, NonEmpty, Pin

router = APIRouter(prefix="/users", tags=["users"])

USERS_KEY = f"{KEY_PREFIX}users"


class UserIn(BaseModel):
    first_name: NonEmpty
    last_name: NonEmpty
    email: Email
    phone: Optional[str] = None
    business_name: Optional[str] = None
    business_type: Optional[str] = None
    industry: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    pin: Optional[Pin] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)
    subscription_tier: Optional[str] = "free"


def public_user(u: dict) -> dict:
    return {k: v for k, v in u.items() if k not in {"password_hash", "pin_hash"}}


def find_user_by_email(email: str) -> Optional[dict]:
    target = (email or "").strip().lower()
    for u in get_store().load_list(USERS_KEY):
        if (u.get("email") or "").lower() == target:
            return u
    return None


@router.get("")
def list_users():
    users = get_store().load_list(USERS_KEY)
    return {"users": [public_user(u) for u in users]}


@router.post("")
def create_user(data: UserIn):
    store = get_store()
    with store.locked():
        users = store.load_list(USERS_KEY)
        if any((u.get("email") or "").lower() == data.email for u in users):
            raise HTTPException(status_code=409, detail="email already registered")
        payload = data.model_dump(exclude={"pin", "password"})
        user = {
            "id": new_id(),
            **payload,
            "role": "admin",
            "status": "active",
            "pin_hash": hash_pin(data.pin) if data.pin else None,
            "password_hash": hash_password(data.password) if data.password else None,
            "created_at": now_iso(),
        }
        users.append(user)
        store.save_list(USERS_KEY, users)
    json_log("info", "user.created", user_id=user["id"])
    return {"user": public_user(user)}
