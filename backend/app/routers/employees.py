from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..deps import get_merchant_id
from ..logs import json_log
from ..security import hash_pin, pin_fingerprint, verify_pin
from ..store import BaseStore, get_store, merchant_key, new_id, now_iso
from ..validation import Email, EmployeeStatus, NonEmpty, Pin, Role

router = APIRouter(prefix="/employees", tags=["employees"])

PERMISSION_KEYS = (
    "can_process_refunds",
    "can_modify_products",
    "can_manage_employees",
    "can_view_reports",
    "can_modify_settings",
    "can_access_admin",
)

ROLE_PERMISSIONS = {
    "admin": {k: True for k in PERMISSION_KEYS},
    "manager": {k: k not in {"can_manage_employees", "can_modify_settings"} for k in PERMISSION_KEYS},
    "employee": {k: False for k in PERMISSION_KEYS},
}

# Development accounts; every merchant starts with these until real staff is added.
TEST_EMPLOYEES = (
    ("emp_001", "Alex", "Admin", "alex.admin@test.com", "0000", "admin", "35.00"),
    ("emp_002", "John", "Manager", "john.manager@test.com", "1234", "manager", "25.00"),
    ("emp_003", "Sarah", "Johnson", "sarah.johnson@test.com", "5678", "employee", "18.00"),
    ("emp_004", "Mike", "Smith", "mike.smith@test.com", "9999", "employee", "16.00"),
)


class Permissions(BaseModel):
    can_process_refunds: bool = False
    can_modify_products: bool = False
    can_manage_employees: bool = False
    can_view_reports: bool = False
    can_modify_settings: bool = False
    can_access_admin: bool = False


class EmployeeIn(BaseModel):
    first_name: NonEmpty
    last_name: NonEmpty
    email: Email
    pin: Pin
    role: Role = "employee"
    status: EmployeeStatus = "active"
    hourly_rate: Decimal = Field(default=Decimal("0"), ge=0)
    permissions: Optional[Permissions] = None


class EmployeeUpdate(BaseModel):
    first_name: Optional[NonEmpty] = None
    last_name: Optional[NonEmpty] = None
    email: Optional[Email] = None
    pin: Optional[Pin] = None
    role: Optional[Role] = None
    status: Optional[EmployeeStatus] = None
    hourly_rate: Optional[Decimal] = Field(default=None, ge=0)
    permissions: Optional[Permissions] = None


def employees_key(merchant_id: str) -> str:
    return merchant_key("employees", merchant_id)


def public_employee(e: dict) -> dict:
    return {k: v for k, v in e.items() if k not in {"pin_hash", "pin_fingerprint"}}


def seed_employees(merchant_id: str) -> list[dict]:
    ts = now_iso()
    return [
        {
            "id": emp_id,
            "merchant_id": merchant_id,
            "first_name": first,
            "last_name": last,
            "email": email,
            "pin_hash": hash_pin(pin),
            "pin_fingerprint": pin_fingerprint(pin, merchant_id),
            "role": role,
            "status": "active",
            "hourly_rate": float(rate),
            "permissions": dict(ROLE_PERMISSIONS[role]),
            "created_at": ts,
            "updated_at": ts,
        }
        for emp_id, first, last, email, pin, role, rate in TEST_EMPLOYEES
    ]


def load_employees(store: BaseStore, merchant_id: str, seed: bool = True) -> list[dict]:
    key = employees_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        if not rows and seed:
            rows = seed_employees(merchant_id)
            store.save_list(key, rows)
            json_log("info", "employees.seeded", merchant_id=merchant_id, count=len(rows))
        return rows


def _pin_taken(rows: list[dict], pin: str, merchant_id: str, exclude_id: Optional[str] = None) -> bool:
    fingerprint = pin_fingerprint(pin, merchant_id)
    for e in rows:
        if e.get("id") == exclude_id or e.get("status") != "active":
            continue
        if e.get("pin_fingerprint") == fingerprint or verify_pin(pin, e.get("pin_hash")):
            return True
    return False


def _fingerprint_taken(rows: list[dict], fingerprint: str, exclude_id: Optional[str] = None) -> bool:
    return any(
        e.get("id") != exclude_id and e.get("status") == "active" and e.get("pin_fingerprint") == fingerprint for e in rows
    )


def _email_taken(rows: list[dict], email: str, exclude_id: Optional[str] = None) -> bool:
    return any(e.get("id") != exclude_id and (e.get("email") or "").lower() == email for e in rows)


@router.get("")
def list_employees(merchant_id: str = Depends(get_merchant_id)):
    rows = load_employees(get_store(), merchant_id)
    return {"employees": [public_employee(e) for e in rows], "message": f"Retrieved {len(rows)} employees"}


@router.post("")
def create_employee(data: EmployeeIn, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    key = employees_key(merchant_id)
    with store.locked():
        rows = load_employees(store, merchant_id)
        if _email_taken(rows, data.email):
            raise HTTPException(status_code=409, detail="email already in use")
        if data.status == "active" and _pin_taken(rows, data.pin, merchant_id):
            raise HTTPException(status_code=409, detail="pin already in use")
        ts = now_iso()
        perms = data.permissions.model_dump() if data.permissions else dict(ROLE_PERMISSIONS[data.role])
        emp = {
            "id": new_id(),
            "merchant_id": merchant_id,
            **data.model_dump(exclude={"pin", "permissions"}),
            "pin_hash": hash_pin(data.pin),
            "pin_fingerprint": pin_fingerprint(data.pin, merchant_id),
            "permissions": perms,
            "created_at": ts,
            "updated_at": ts,
        }
        rows.append(emp)
        store.save_list(key, rows)
    json_log("info", "employee.created", merchant_id=merchant_id, employee_id=emp["id"], role=emp["role"])
    return {"employee": public_employee(emp)}


@router.patch("/{employee_id}")
def update_employee(employee_id: str, data: EmployeeUpdate, merchant_id: str = Depends(get_merchant_id)):
    patch = data.model_dump(exclude_unset=True)
    store = get_store()
    key = employees_key(merchant_id)
    with store.locked():
        rows = load_employees(store, merchant_id)
        emp = next((e for e in rows if e.get("id") == employee_id), None)
        if emp is None:
            raise HTTPException(status_code=404, detail="employee not found")
        if patch.get("email") and _email_taken(rows, patch["email"], exclude_id=employee_id):
            raise HTTPException(status_code=409, detail="email already in use")
        pin = patch.pop("pin", None)
        status = patch.get("status") or emp.get("status")
        reactivating = status == "active" and emp.get("status") != "active"
        if status == "active" and (pin or reactivating):
            if pin:
                taken = _pin_taken(rows, pin, merchant_id, exclude_id=employee_id)
            elif emp.get("pin_fingerprint"):
                taken = _fingerprint_taken(rows, emp["pin_fingerprint"], exclude_id=employee_id)
            else:
                raise HTTPException(status_code=400, detail="pin required to reactivate employee")
            if taken:
                raise HTTPException(status_code=409, detail="pin already in use")
        if pin:
            emp["pin_hash"] = hash_pin(pin)
            emp["pin_fingerprint"] = pin_fingerprint(pin, merchant_id)
        for k, v in patch.items():
            if v is not None:
                emp[k] = v
        if patch.get("permissions") is None and ("role" in patch or "permissions" in patch):
            emp["permissions"] = dict(ROLE_PERMISSIONS[emp["role"]])
        emp["updated_at"] = now_iso()
        store.save_list(key, rows)
    return {"employee": public_employee(emp)}


@router.delete("/{employee_id}")
def delete_employee(employee_id: str, merchant_id: str = Depends(get_merchant_id)):
    store = get_store()
    key = employees_key(merchant_id)
    with store.locked():
        rows = load_employees(store, merchant_id, seed=False)
        kept = [e for e in rows if e.get("id") != employee_id]
        if len(kept) == len(rows):
            raise HTTPException(status_code=404, detail="employee not found")
        store.save_list(key, kept)
    json_log("info", "employee.deleted", merchant_id=merchant_id, employee_id=employee_id)
    return {"ok": True}
