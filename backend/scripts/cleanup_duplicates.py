#!/usr/bin/env python3
import argparse
import sys

from backend.app.config import settings
from backend.app.logs import json_log
from backend.app.sales import products_key
from backend.app.store import get_store


def split_duplicates(products: list[dict]) -> tuple[list[dict], list[dict]]:
    """
    Group products by (name, category), case-insensitive, and keep the most
    recently created one of each group. Returns (kept, removed), kept in the
    original order.
    """
    newest: dict[tuple[str, str], dict] = {}
    for p in products:
        k = ((p.get("name") or "").strip().lower(), (p.get("category") or "").strip().lower())
        cur = newest.get(k)
        if cur is None or (p.get("created_at") or "") > (cur.get("created_at") or ""):
            newest[k] = p
    keep_ids = {id(p) for p in newest.values()}
    kept = [p for p in products if id(p) in keep_ids]
    removed = [p for p in products if id(p) not in keep_ids]
    return kept, removed


def cleanup(store, merchant_id: str, dry_run: bool = False) -> list[dict]:
    key = products_key(merchant_id)
    with store.locked():
        kept, removed = split_duplicates(store.load_list(key))
        if removed and not dry_run:
            store.save_list(key, kept)
    return removed


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Remove duplicate products (same name and category).")
    parser.add_argument("--merchant", default=settings.default_merchant_id)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args(argv)

    merchant_id = (args.merchant or "").strip()
    if not merchant_id:
        print("merchant is required", file=sys.stderr)
        return 2

    removed = cleanup(get_store(), merchant_id, dry_run=args.dry_run)
    for p in removed:
        print(f"{'would remove' if args.dry_run else 'removed'}: {p.get('name')} ({p.get('id')})")
    json_log("info", "products.deduplicated", merchant_id=merchant_id, removed=len(removed), dry_run=args.dry_run)
    print(f"OK removed={len(removed)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
