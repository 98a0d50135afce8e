#!/usr/bin/env python3
"""
Long-running payment monitor.

Polls open crypto payments for all merchants (or a specified subset), moves
them through confirming/completed/expired, and pushes terminal states onto
the linked transaction. Run with `python -m backend.workers.payment_monitor`.

`--watch <payment_id>` follows a single payment until it settles instead.
"""

import argparse
import sys
import time
import traceback
from typing import Optional

from backend.app.config import settings
from backend.app.logs import json_log
from backend.app.payment_status import (
    DEFAULT_MAX_RETRIES,
    HEARTBEAT_SECONDS,
    TERMINAL,
    MempoolClient,
    check_payment,
    find_payment,
    monitor_payment,
    run_once,
    save_checked_payment,
    sync_transaction,
    transition,
)
from backend.app.store import StoreError, get_store


def run_pass(merchant_ids=None, mempool=None) -> dict:
    store = get_store()
    try:
        return run_once(store, merchant_ids=merchant_ids, mempool=mempool)
    except StoreError as ex:
        # Store outages are retried on the next pass.
        json_log("error", "worker.store.error", error=str(ex))
        traceback.print_exc(file=sys.stderr)
        return {"checked": 0, "settled": 0, "errors": 1}


def watch(
    merchant_id: str,
    payment_id: str,
    mempool: Optional[MempoolClient] = None,
    poll_interval: float = HEARTBEAT_SECONDS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    sleep=time.sleep,
) -> Optional[dict]:
    store = get_store()
    payment = find_payment(store, merchant_id, payment_id)
    if payment is None:
        json_log("error", "worker.watch.not_found", merchant_id=merchant_id, payment_id=payment_id)
        return None

    def check(p: dict) -> dict:
        current = find_payment(store, merchant_id, payment_id)
        if current is None or current.get("status") in TERMINAL:
            # Settled elsewhere (manual action or another worker).
            return current or transition(dict(p), "cancelled", error="payment removed")
        return check_payment(store, merchant_id, p, mempool)

    def on_update(p: dict) -> None:
        if p.get("status") not in TERMINAL:
            save_checked_payment(store, merchant_id, p)

    json_log("info", "worker.watch.started", merchant_id=merchant_id, payment_id=payment_id)
    payment = monitor_payment(payment, check, max_retries=max_retries, poll_interval=poll_interval, sleep=sleep, on_update=on_update)
    if save_checked_payment(store, merchant_id, payment) is not None:
        sync_transaction(store, merchant_id, payment)
    latest = find_payment(store, merchant_id, payment_id) or payment
    json_log("info", "worker.watch.done", merchant_id=merchant_id, payment_id=payment_id, status=latest.get("status"))
    return latest


def main(argv=None):
    parser = argparse.ArgumentParser()
    parser.add_argument("--sleep", type=float, default=HEARTBEAT_SECONDS)
    parser.add_argument("--merchants", nargs="*", help="Optional list of merchant ids to check")
    parser.add_argument("--mempool-url", default=settings.mempool_api_url)
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    parser.add_argument("--watch", metavar="PAYMENT_ID", help="Follow one payment (of the first --merchants id) until it settles")
    args = parser.parse_args(argv)

    mempool = MempoolClient(args.mempool_url)
    if args.watch:
        merchant_id = (args.merchants or [settings.default_merchant_id])[0]
        return watch(merchant_id, args.watch, mempool, poll_interval=args.sleep)

    json_log("info", "worker.started", store=settings.store_backend, network=settings.bitcoin_network, sleep=args.sleep)
    while True:
        stats = run_pass(args.merchants or None, mempool)
        json_log("info", "worker.heartbeat", **stats)

        if args.once:
            return stats

        # Settling payments want a quick follow-up; idle loops back off.
        time.sleep(0 if stats["settled"] else args.sleep)


if __name__ == "__main__":
    main()
