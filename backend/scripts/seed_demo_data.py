#!/usr/bin/env python3
import argparse
import sys

from backend.app.config import settings
from backend.app.logs import json_log
from backend.app.routers.employees import load_employees
from backend.app.sales import products_key
from backend.app.store import get_store, new_id, now_iso

DEFAULT_PRODUCTS = (
    # name, price, category, emoji, stock
    ("Espresso", "2.50", "Coffee", "☕", 100),
    ("Cappuccino", "3.75", "Coffee", "☕", 100),
    ("Latte", "4.00", "Coffee", "🥛", 100),
    ("Green Tea", "2.25", "Tea", "🍵", 80),
    ("Croissant", "3.00", "Bakery", "🥐", 40),
    ("Blueberry Muffin", "2.75", "Bakery", "🧁", 40),
    ("Bagel", "2.50", "Bakery", "🥯", 30),
    ("Orange Juice", "3.50", "Drinks", "🍊", 50),
)


def default_products(merchant_id: str) -> list[dict]:
    ts = now_iso()
    return [
        {
            "id": new_id(),
            "merchant_id": merchant_id,
            "name": name,
            "price": float(price),
            "category": category,
            "emoji": emoji,
            "description": None,
            "in_stock": stock > 0,
            "stock_quantity": stock,
            "created_at": ts,
            "updated_at": ts,
        }
        for name, price, category, emoji, stock in DEFAULT_PRODUCTS
    ]


def seed_products(store, merchant_id: str) -> int:
    """Add missing default products; existing names are left untouched."""
    key = products_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        have = {(p.get("name") or "").strip().lower() for p in rows}
        added = [p for p in default_products(merchant_id) if p["name"].lower() not in have]
        if added:
            store.save_list(key, rows + added)
    return len(added)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Seed default products and test employees for a merchant.")
    parser.add_argument("--merchant", default=settings.default_merchant_id)
    parser.add_argument("--skip-employees", action="store_true")
    args = parser.parse_args(argv)

    merchant_id = (args.merchant or "").strip()
    if not merchant_id:
        print("merchant is required", file=sys.stderr)
        return 2

    store = get_store()
    added = seed_products(store, merchant_id)
    employees = 0 if args.skip_employees else len(load_employees(store, merchant_id))
    json_log("info", "seed.done", merchant_id=merchant_id, products_added=added, employees=employees)
    print(f"OK products_added={added} employees={employees}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
