#!/usr/bin/env python3
import argparse
import sys

from backend.app.logs import json_log
from backend.app.store import MERCHANT_KINDS, get_store, merchant_key


def merchant_keys(store, merchant_id: str) -> list[str]:
    wanted = [merchant_key(kind, merchant_id) for kind in MERCHANT_KINDS]
    return [k for k in wanted if store.get_item(k) is not None]


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Delete every stored document for one merchant (or all data).")
    parser.add_argument("--merchant", help="Merchant id to clear")
    parser.add_argument("--all", action="store_true", help="Clear every BitAgora key")
    parser.add_argument("--yes", action="store_true", help="Confirm the deletion")
    args = parser.parse_args(argv)

    merchant_id = (args.merchant or "").strip()
    if not merchant_id and not args.all:
        print("pass --merchant <id> or --all", file=sys.stderr)
        return 2
    if not args.yes:
        print("refusing to delete without --yes", file=sys.stderr)
        return 2

    store = get_store()
    if args.all:
        removed = store.clear()
    else:
        with store.locked():
            keys = merchant_keys(store, merchant_id)
            for k in keys:
                store.remove_item(k)
        removed = len(keys)
    json_log("warning", "store.cleared", merchant_id=merchant_id or None, removed=removed)
    print(f"OK removed={removed}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
