from typing import Any, Optional

from .store import BaseStore, merchant_key, now_iso

CATEGORIES = ("pos", "admin", "security", "ui", "integration")


def _flag(key, name, description, category, enabled=True, archived=False, status="active"):
    return {
        "key": key,
        "name": name,
        "description": description,
        "enabled": enabled,
        "archived": archived,
        "category": category,
        "development_status": status,
        "version": "1.0.0",
        "last_modified": None,
    }


CATALOGUE = [
    _flag("INVENTORY_MANAGEMENT", "Inventory Management", "Enable inventory tracking and management features", "pos"),
    _flag("RECEIPT_PRINTING", "Receipt Printing", "Enable receipt printing functionality", "pos"),
    _flag("TRANSACTION_HISTORY", "Transaction History", "Enable transaction history and reporting", "pos"),
    _flag("ADMIN_DASHBOARD", "Admin Dashboard", "Enable administrative dashboard and controls", "admin"),
    _flag("USER_MANAGEMENT", "User Management", "Enable user account management and permissions", "admin"),
    _flag("BUSINESS_SETTINGS", "Business Settings", "Enable business configuration and settings management", "admin"),
    _flag("PAYMENT_SETTINGS", "Payment Settings", "Enable payment method configuration and settings", "admin"),
    _flag("PIN_PROTECTION", "PIN Protection", "Enable PIN-based access control for sensitive operations", "security"),
    _flag("TWO_FACTOR_AUTH", "Two-Factor Authentication", "Enable two-factor authentication for enhanced security",
          "security", enabled=False, archived=True, status="archived"),
    _flag("DARK_MODE", "Dark Mode", "Enable dark mode theme support", "ui", enabled=False, archived=True, status="archived"),
    _flag("MINIMAL_UI", "Minimal UI Mode", "Enable minimal UI mode with simplified interface", "ui"),
    _flag("STRIKE_API_INTEGRATION", "Strike API Integration", "Enable Strike API integration for Lightning payments", "integration"),
    _flag("CRYPTO_QR_GENERATION", "Crypto QR Generation", "Enable cryptocurrency QR code generation for payments", "integration"),
]

# Merchant overrides may only touch these fields.
_OVERRIDABLE = ("enabled", "last_modified")


def _overrides_key(merchant_id: str) -> str:
    return merchant_key("feature_flags", merchant_id)


def list_flags(store: BaseStore, merchant_id: str, category: Optional[str] = None) -> list[dict[str, Any]]:
    overrides = store.load_doc(_overrides_key(merchant_id)) or {}
    out = []
    for base in CATALOGUE:
        if category and base["category"] != category:
            continue
        flag = dict(base)
        ov = overrides.get(flag["key"])
        if isinstance(ov, dict):
            flag.update({k: ov[k] for k in _OVERRIDABLE if k in ov})
        out.append(flag)
    return out


def get_flag(store: BaseStore, merchant_id: str, key: str) -> Optional[dict[str, Any]]:
    for flag in list_flags(store, merchant_id):
        if flag["key"] == key.upper():
            return flag
    return None


def is_enabled(flag: Optional[dict]) -> bool:
    return bool(flag) and bool(flag.get("enabled")) and not flag.get("archived")


def is_feature_enabled(store: BaseStore, merchant_id: str, key: str) -> bool:
    return is_enabled(get_flag(store, merchant_id, key))


def set_enabled(store: BaseStore, merchant_id: str, key: str, enabled: bool) -> Optional[dict[str, Any]]:
    """Returns the updated flag, or None for an unknown key. Archived flags cannot be switched on."""
    flag = get_flag(store, merchant_id, key)
    if flag is None:
        return None
    if enabled and flag.get("archived"):
        raise ValueError(f"feature {flag['key']} is archived")
    stamp = now_iso()
    okey = _overrides_key(merchant_id)
    with store.locked():
        overrides = store.load_doc(okey) or {}
        overrides[flag["key"]] = {"enabled": bool(enabled), "last_modified": stamp}
        store.set_item(okey, overrides)
    flag.update({"enabled": bool(enabled), "last_modified": stamp})
    return flag


def stats(flags: list[dict[str, Any]]) -> dict[str, Any]:
    total = len(flags)
    enabled = sum(1 for f in flags if is_enabled(f))
    return {
        "total": total,
        "enabled": enabled,
        "archived": sum(1 for f in flags if f.get("archived")),
        "beta": sum(1 for f in flags if f.get("development_status") == "beta"),
        "active": sum(1 for f in flags if f.get("development_status") == "active"),
        "enabled_percentage": round(enabled / total * 100) if total else 0,
    }
