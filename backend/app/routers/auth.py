from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..deps import get_merchant_id
from ..logs import json_log
from ..security import is_valid_pin, verify_password, verify_pin
from ..store import get_store
from .employees import ROLE_PERMISSIONS, load_employees, public_employee
from .users import find_user_by_email, public_user

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginIn(BaseModel):
    email: str
    password: str


class PinLoginIn(BaseModel):
    pin: str
    employee_id: Optional[str] = None


class AdminPinIn(BaseModel):
    pin: str


@router.post("/login")
def login(data: LoginIn):
    user = find_user_by_email(data.email)
    if not user or user.get("status") == "inactive":
        raise HTTPException(status_code=401, detail="invalid email or password")
    ok = verify_password(data.password, user.get("password_hash"))
    if not ok and is_valid_pin(data.password):
        # Accounts registered through onboarding may only have a PIN.
        ok = verify_pin(data.password, user.get("pin_hash"))
    if not ok:
        json_log("warning", "auth.login_failed", email=user.get("email"))
        raise HTTPException(status_code=401, detail="invalid email or password")
    return {"user": public_user(user)}


def _match_employee(merchant_id: str, pin: str, employee_id: Optional[str] = None) -> Optional[dict]:
    if not is_valid_pin(pin):
        return None
    for e in load_employees(get_store(), merchant_id):
        if employee_id and e.get("id") != employee_id:
            continue
        if e.get("status") != "active":
            continue
        if verify_pin(pin, e.get("pin_hash")):
            return e
    return None


@router.post("/pin-login")
def pin_login(data: PinLoginIn, merchant_id: str = Depends(get_merchant_id)):
    emp = _match_employee(merchant_id, data.pin, data.employee_id)
    if emp is None:
        json_log("warning", "auth.pin_login_failed", merchant_id=merchant_id)
        raise HTTPException(status_code=401, detail="invalid pin or inactive employee")
    json_log("info", "auth.pin_login", merchant_id=merchant_id, employee_id=emp["id"])
    return {"employee": public_employee(emp)}


@router.post("/verify-admin-pin")
def verify_admin_pin(data: AdminPinIn, merchant_id: str = Depends(get_merchant_id)):
    emp = _match_employee(merchant_id, data.pin)
    if emp is None:
        raise HTTPException(status_code=401, detail="invalid pin or inactive employee")
    if emp.get("role") not in {"admin", "manager"}:
        raise HTTPException(status_code=403, detail="admin or manager pin required")
    perms = emp.get("permissions") or ROLE_PERMISSIONS[emp["role"]]
    return {"employee": public_employee(emp), "permissions": perms}
