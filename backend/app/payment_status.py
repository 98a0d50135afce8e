"""
Payment intents and their lifecycle.

    pending -> processing -> confirming -> completed
        \\-> failed | expired | cancelled   (terminal)

A payment tracks one crypto checkout for a transaction. Bitcoin intents are
settled by watching the receiving address on mempool.space; Lightning intents
follow their LNURL invoice; everything else is settled manually.
"""
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from .config import settings
from .errors import BitAgoraError, BitAgoraErrorType
from .exchange import SATS_PER_BTC
from .http_client import http_get_json
from .logs import json_log
from .store import KEY_PREFIX, BaseStore, merchant_key, new_id, now_iso

STATUSES = ("pending", "processing", "confirming", "completed", "failed", "expired", "cancelled")
TERMINAL = frozenset({"completed", "failed", "expired", "cancelled"})

DEFAULT_TIMEOUT_SECONDS = 10 * 60
LIGHTNING_TIMEOUT_SECONDS = 15 * 60
DEFAULT_MAX_RETRIES = 3
DEFAULT_POLL_INTERVAL = 2.0
HEARTBEAT_SECONDS = 5.0

AMOUNT_TOLERANCE = Decimal("0.01")
# Miners may stamp blocks up to ~2h off wall clock; older outputs belong to earlier payments.
BLOCK_TIME_GRACE_SECONDS = 2 * 60 * 60

STAGES = {
    "pending": ("Waiting for payment...", 10),
    "processing": ("Waiting for payment confirmation...", 50),
    "confirming": ("Payment detected, waiting for confirmations...", 75),
    "completed": ("Payment completed", 100),
    "failed": ("Payment failed", 0),
    "expired": ("Payment expired", 0),
    "cancelled": ("Payment cancelled", 0),
}

ACTIONS = {"complete": "completed", "fail": "failed", "cancel": "cancelled"}

# Transaction status that follows a terminal payment status.
TRANSACTION_STATUS = {"completed": "completed", "failed": "failed", "expired": "failed", "cancelled": "failed"}


def payments_key(merchant_id: str) -> str:
    return merchant_key("payments", merchant_id)


def _parse_iso(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def required_confirmations(amount_usd: Decimal) -> int:
    return 1 if Decimal(str(amount_usd)) < settings.large_payment_usd else 6


def new_payment(
    transaction_id: str,
    method: str,
    amount_usd: Decimal,
    crypto_amount: Optional[Decimal] = None,
    address: Optional[str] = None,
    payment_request: Optional[str] = None,
    invoice_id: Optional[str] = None,
    timeout_seconds: Optional[int] = None,
) -> dict:
    created = datetime.now(timezone.utc)
    if timeout_seconds is None:
        timeout_seconds = LIGHTNING_TIMEOUT_SECONDS if method == "lightning" else DEFAULT_TIMEOUT_SECONDS
    stage, progress = STAGES["pending"]
    return {
        "id": new_id(),
        "transaction_id": transaction_id,
        "method": method,
        "amount_usd": amount_usd,
        "crypto_amount": crypto_amount,
        "address": address,
        "payment_request": payment_request,
        "invoice_id": invoice_id,
        "status": "pending",
        "stage": stage,
        "progress": progress,
        "confirmations": 0,
        "required_confirmations": required_confirmations(amount_usd),
        "received_amount": None,
        "created_at": created.isoformat(),
        "expires_at": (created + timedelta(seconds=timeout_seconds)).isoformat(),
        "updated_at": created.isoformat(),
        "error": None,
        "check_attempts": 0,
        "last_checked": None,
    }


def transition(payment: dict, status: str, **fields) -> dict:
    if status not in STAGES:
        raise BitAgoraError(BitAgoraErrorType.VALIDATION_ERROR, f"unknown payment status: {status}")
    stage, progress = STAGES[status]
    if status == "confirming" and payment.get("required_confirmations"):
        # Scale the bar between "seen" and "final" by confirmations so far.
        done = min(int(fields.get("confirmations", payment.get("confirmations") or 0)), int(payment["required_confirmations"]))
        progress = 75 + int(20 * done / int(payment["required_confirmations"]))
    payment.update(fields)
    payment["status"] = status
    payment["stage"] = stage
    payment["progress"] = progress
    payment["updated_at"] = now_iso()
    if status == "completed":
        payment["completed_at"] = payment.get("completed_at") or payment["updated_at"]
    return payment


def is_expired(payment: dict, now: Optional[datetime] = None) -> bool:
    expires = _parse_iso(payment.get("expires_at"))
    if expires is None:
        return False
    return (now or datetime.now(timezone.utc)) >= expires


def refresh_expiry(payment: dict, now: Optional[datetime] = None) -> bool:
    if payment.get("status") in TERMINAL or not is_expired(payment, now):
        return False
    transition(payment, "expired", error=payment.get("error") or "payment window elapsed")
    return True


def apply_action(payment: dict, action: str, reason: Optional[str] = None) -> dict:
    status = ACTIONS.get((action or "").strip().lower())
    if status is None:
        raise BitAgoraError(BitAgoraErrorType.VALIDATION_ERROR, f"invalid action: {action}")
    if payment.get("status") in TERMINAL:
        raise BitAgoraError(BitAgoraErrorType.PAYMENT_ERROR, f"payment already {payment['status']}")
    fields: dict[str, Any] = {}
    if status == "completed":
        fields["confirmations"] = max(int(payment.get("confirmations") or 0), int(payment.get("required_confirmations") or 0))
    if status in {"failed", "cancelled"} and reason:
        fields["error"] = reason
    return transition(payment, status, **fields)


# Bitcoin on-chain

class MempoolClient:
    def __init__(self, base_url: Optional[str] = None, fetch: Optional[Callable[[str], Any]] = None):
        self.base_url = (base_url or settings.mempool_api_url).rstrip("/")
        self._fetch = fetch or http_get_json

    def address_txs(self, address: str) -> list[dict]:
        data = self._fetch(f"{self.base_url}/address/{address}/txs")
        if not isinstance(data, list):
            raise BitAgoraError(BitAgoraErrorType.NETWORK_ERROR, "unexpected address txs response")
        return data

    def tip_height(self) -> int:
        data = self._fetch(f"{self.base_url}/blocks/tip/height")
        try:
            return int(data)
        except (TypeError, ValueError):
            raise BitAgoraError(BitAgoraErrorType.NETWORK_ERROR, "unexpected tip height response") from None


def evaluate_bitcoin(payment: dict, txs: list[dict], tip_height: int, now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Sum outputs paying the payment address and decide the next status.

    Returns {"status", "confirmations", "received_sats", "expected_sats", "txids"}.
    Underpayment is only reported as failed once the payment window has elapsed.
    """
    address = payment.get("address")
    created = _parse_iso(payment.get("created_at"))
    cutoff = created.timestamp() - BLOCK_TIME_GRACE_SECONDS if created else None
    expected = int((Decimal(str(payment.get("crypto_amount") or 0)) * SATS_PER_BTC).to_integral_value())

    received = 0
    confirmations: Optional[int] = None
    txids = []
    for tx in txs:
        status = tx.get("status") or {}
        if status.get("confirmed") and cutoff is not None and (status.get("block_time") or 0) < cutoff:
            continue
        paid = sum(int(o.get("value") or 0) for o in (tx.get("vout") or []) if o.get("scriptpubkey_address") == address)
        if paid <= 0:
            continue
        received += paid
        txids.append(tx.get("txid"))
        conf = (tip_height - int(status["block_height"]) + 1) if status.get("confirmed") and status.get("block_height") else 0
        confirmations = conf if confirmations is None else min(confirmations, conf)

    result = {
        "confirmations": confirmations or 0,
        "received_sats": received,
        "expected_sats": expected,
        "txids": txids,
    }
    if received == 0:
        result["status"] = "pending"
        return result

    enough = Decimal(received) >= Decimal(expected) * (1 - AMOUNT_TOLERANCE)
    if not enough:
        result["status"] = "failed" if is_expired(payment, now) else "processing"
        if result["status"] == "failed":
            result["error"] = "underpaid"
        return result
    if result["confirmations"] >= int(payment.get("required_confirmations") or 1):
        result["status"] = "completed"
    else:
        result["status"] = "confirming"
    return result


def check_bitcoin(payment: dict, client: Optional[MempoolClient] = None) -> dict:
    client = client or MempoolClient()
    txs = client.address_txs(payment["address"])
    tip = client.tip_height()
    res = evaluate_bitcoin(payment, txs, tip)
    fields = {"confirmations": res["confirmations"], "received_amount": res["received_sats"], "txids": res["txids"]}
    if res.get("error"):
        fields["error"] = res["error"]
    if res["status"] != payment.get("status") or res["confirmations"] != payment.get("confirmations"):
        transition(payment, res["status"], **fields)
    else:
        payment.update(fields)
    return payment


# Monitoring

def monitor_payment(
    payment: dict,
    check: Callable[[dict], dict],
    max_retries: int = DEFAULT_MAX_RETRIES,
    timeout_seconds: Optional[float] = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    on_update: Optional[Callable[[dict], None]] = None,
) -> dict:
    """
    Poll `check(payment)` until the payment is terminal.

    `check` returns the updated payment. Consecutive check errors are counted;
    after `max_retries` in a row the payment fails with a network error. The
    payment expires once `timeout_seconds` have elapsed (defaults to the time
    left until its `expires_at`).
    """
    if timeout_seconds is None:
        expires = _parse_iso(payment.get("expires_at"))
        left = (expires - datetime.now(timezone.utc)).total_seconds() if expires else DEFAULT_TIMEOUT_SECONDS
        timeout_seconds = max(0.0, left)
    deadline = clock() + timeout_seconds
    errors = 0

    while payment.get("status") not in TERMINAL:
        if clock() >= deadline:
            transition(payment, "expired", error=payment.get("error") or "payment window elapsed")
            break
        payment["check_attempts"] = int(payment.get("check_attempts") or 0) + 1
        payment["last_checked"] = now_iso()
        try:
            payment = check(payment)
            errors = 0
        except BitAgoraError as exc:
            errors += 1
            json_log("warning", "payment.check_failed", payment_id=payment.get("id"), attempt=errors, error=exc.message)
            if errors >= max_retries:
                transition(payment, "failed", error=f"{BitAgoraErrorType.NETWORK_ERROR.value}: {exc.message}")
        if on_update is not None:
            on_update(payment)
        if payment.get("status") in TERMINAL:
            break
        sleep(poll_interval)
    return payment


def load_payments(store: BaseStore, merchant_id: str) -> list[dict]:
    return store.load_list(payments_key(merchant_id))


def find_payment(store: BaseStore, merchant_id: str, payment_id: str) -> Optional[dict]:
    for p in load_payments(store, merchant_id):
        if p.get("id") == payment_id:
            return p
    return None


def save_payment(store: BaseStore, merchant_id: str, payment: dict) -> dict:
    key = payments_key(merchant_id)
    with store.locked():
        rows = [p for p in store.load_list(key) if p.get("id") != payment["id"]]
        rows.append(payment)
        store.save_list(key, rows)
    return payment


def save_checked_payment(store: BaseStore, merchant_id: str, payment: dict) -> Optional[dict]:
    """
    Write back a payment that was checked outside the store lock.

    Returns None (and writes nothing) when the stored record was removed or
    settled in the meantime, e.g. by a manual cancel.
    """
    key = payments_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        current = next((p for p in rows if p.get("id") == payment["id"]), None)
        if current is None or current.get("status") in TERMINAL:
            return None
        store.save_list(key, [payment if p.get("id") == payment["id"] else p for p in rows])
    return payment


def merchant_ids_with_payments(store: BaseStore) -> list[str]:
    prefix = f"{KEY_PREFIX}payments_"
    return [k[len(prefix):] for k in store.keys(prefix)]


def check_payment(store: BaseStore, merchant_id: str, payment: dict, mempool: Optional[MempoolClient] = None, lnurl=None) -> dict:
    """One status probe for a payment, by method. Manual-only methods just age out."""
    if payment.get("status") in TERMINAL:
        return payment
    method = payment.get("method")
    if method == "bitcoin" and payment.get("address"):
        check_bitcoin(payment, mempool)
    elif method == "lightning" and payment.get("invoice_id"):
        from . import lightning

        invoice = lightning.find_invoice(store, merchant_id, payment["invoice_id"])
        if invoice is not None:
            invoice = lightning.refresh_status(store, merchant_id, invoice, lnurl)
            if invoice.get("state") == "PAID":
                transition(payment, "completed", confirmations=payment.get("required_confirmations") or 1)
            elif invoice.get("state") == "EXPIRED":
                transition(payment, "expired", error="invoice expired")
    refresh_expiry(payment)
    return payment


def sync_transaction(store: BaseStore, merchant_id: str, payment: dict) -> None:
    from .sales import set_transaction_status

    status = TRANSACTION_STATUS.get(payment.get("status"))
    if status:
        set_transaction_status(store, merchant_id, payment.get("transaction_id"), status)


def run_once(store: BaseStore, merchant_ids: Optional[list[str]] = None, mempool: Optional[MempoolClient] = None) -> dict[str, int]:
    """Check every open payment once. Returns counters for the heartbeat log."""
    stats = {"checked": 0, "settled": 0, "errors": 0}
    for merchant_id in merchant_ids or merchant_ids_with_payments(store):
        for payment in load_payments(store, merchant_id):
            if payment.get("status") in TERMINAL:
                continue
            stats["checked"] += 1
            payment["check_attempts"] = int(payment.get("check_attempts") or 0) + 1
            payment["last_checked"] = now_iso()
            try:
                check_payment(store, merchant_id, payment, mempool)
            except BitAgoraError as exc:
                stats["errors"] += 1
                json_log("warning", "payment.check_failed", merchant_id=merchant_id, payment_id=payment.get("id"), error=exc.message)
                refresh_expiry(payment)
            if save_checked_payment(store, merchant_id, payment) is None:
                json_log("info", "payment.check_superseded", merchant_id=merchant_id, payment_id=payment.get("id"))
                continue
            if payment.get("status") in TERMINAL:
                stats["settled"] += 1
                sync_transaction(store, merchant_id, payment)
    return stats
