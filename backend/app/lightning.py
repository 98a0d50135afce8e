"""
Lightning invoices through LNURL-pay (LUD-06/LUD-16) against the merchant's own
Lightning address, with LUD-21 `verify` URLs for settlement checks.

Flow for `alice@example.com`:
  1. GET https://example.com/.well-known/lnurlp/alice
  2. check minSendable <= amount_msats <= maxSendable
  3. GET <callback>?amount=<msats>  -> {"pr": <bolt11>, "verify": <url>?}

In sandbox any failure degrades to a static development invoice so the POS flow
can be exercised without a funded node.
"""
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional
from urllib.parse import urlencode, urlsplit

from bolt11 import decode as decode_bolt11
from bolt11.exceptions import Bolt11Exception

from .config import settings
from .crypto import LIGHTNING_ADDRESS_RE, check_amount
from .errors import BitAgoraError, BitAgoraErrorType
from .http_client import http_get_json
from .logs import json_log
from .store import BaseStore, merchant_key, new_id, now_iso

INVOICE_EXPIRY_SECONDS = 15 * 60
INVOICE_DESCRIPTION_PREFIX = "BitAgora POS Payment"
FALLBACK_INVOICE = "lnbc1500n1pjhm9j7pp5zq0q6p8p9p0p1p2p3p4p5p6p7p8p9p0p1p2p3p4p5p6p7p8p9p0p1"

RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 30.0

MAX_EVENTS = 1000

STATES = ("UNPAID", "PENDING", "PAID", "FAILED", "EXPIRED")

EVENT_INVOICE_GENERATED = "invoice_generated"
EVENT_PAYMENT_COMPLETED = "payment_completed"
EVENT_PAYMENT_FAILED = "payment_failed"
EVENT_INVOICE_EXPIRED = "invoice_expired"
EVENT_API_ERROR = "api_error"
EVENT_FALLBACK_USED = "fallback_used"

STATUS_MESSAGES = {
    "UNPAID": "Waiting for payment...",
    "PENDING": "Payment detected, confirming...",
    "PAID": "Payment confirmed successfully!",
    "FAILED": "Payment failed. Please try again.",
    "EXPIRED": "Payment expired. Please generate a new invoice.",
}


def _parse_iso(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


class LnurlClient:
    def __init__(
        self,
        fetch: Optional[Callable[[str], Any]] = None,
        sleep: Callable[[float], None] = time.sleep,
        attempts: int = RETRY_ATTEMPTS,
    ):
        self._fetch = fetch or http_get_json
        self._sleep = sleep
        self.attempts = max(1, attempts)

    def _get(self, url: str) -> dict:
        delay = RETRY_BASE_DELAY
        last: Optional[BitAgoraError] = None
        for attempt in range(1, self.attempts + 1):
            try:
                data = self._fetch(url)
            except BitAgoraError as exc:
                last = exc
                if attempt < self.attempts:
                    self._sleep(delay)
                    delay = min(delay * 2, RETRY_MAX_DELAY)
                continue
            if not isinstance(data, dict):
                raise BitAgoraError(BitAgoraErrorType.PAYMENT_ERROR, "unexpected LNURL response", {"url": url})
            if str(data.get("status") or "").upper() == "ERROR":
                raise BitAgoraError(BitAgoraErrorType.PAYMENT_ERROR, data.get("reason") or "LNURL error", {"url": url})
            return data
        assert last is not None
        raise last

    @staticmethod
    def pay_url(lightning_address: str) -> str:
        if not LIGHTNING_ADDRESS_RE.match(lightning_address or ""):
            raise BitAgoraError(BitAgoraErrorType.CRYPTO_ERROR, "invalid lightning address")
        user, domain = lightning_address.strip().split("@", 1)
        return f"https://{domain.lower()}/.well-known/lnurlp/{user}"

    def request_invoice(self, lightning_address: str, amount_msats: int, comment: Optional[str] = None) -> dict:
        params = self._get(self.pay_url(lightning_address))
        callback = params.get("callback")
        if not callback or urlsplit(callback).scheme != "https":
            raise BitAgoraError(BitAgoraErrorType.PAYMENT_ERROR, "LNURL pay response has no usable callback")
        min_sendable = int(params.get("minSendable") or 0)
        max_sendable = int(params.get("maxSendable") or 0)
        if amount_msats < min_sendable or (max_sendable and amount_msats > max_sendable):
            raise BitAgoraError(
                BitAgoraErrorType.VALIDATION_ERROR,
                "amount outside the wallet's sendable range",
                {"min_msats": min_sendable, "max_msats": max_sendable, "amount_msats": amount_msats},
            )
        query = {"amount": amount_msats}
        comment_allowed = int(params.get("commentAllowed") or 0)
        if comment and comment_allowed:
            query["comment"] = comment[:comment_allowed]
        sep = "&" if "?" in callback else "?"
        res = self._get(f"{callback}{sep}{urlencode(query)}")
        pr = (res.get("pr") or "").strip().lower()
        if not pr.startswith("ln"):
            raise BitAgoraError(BitAgoraErrorType.PAYMENT_ERROR, "LNURL callback returned no invoice")
        return {"payment_request": pr, "verify_url": res.get("verify")}

    def verify(self, verify_url: str) -> dict:
        res = self._get(verify_url)
        return {"settled": bool(res.get("settled")), "preimage": res.get("preimage")}


def _invoices_key(merchant_id: str) -> str:
    return merchant_key("lightning_invoices", merchant_id)


def _events_key(merchant_id: str) -> str:
    return merchant_key("lightning_events", merchant_id)


# Analytics

def record_event(store: BaseStore, merchant_id: str, event_type: str, **fields) -> dict:
    event = {"event_type": event_type, "timestamp": now_iso(), **fields}
    key = _events_key(merchant_id)
    with store.locked():
        events = store.load_list(key)
        events.append(event)
        store.save_list(key, events[-MAX_EVENTS:])
    return event


def compute_metrics(events: Iterable[dict], window_hours: float = 24, now: Optional[datetime] = None) -> dict[str, Any]:
    end = now or datetime.now(timezone.utc)
    start = end - timedelta(hours=window_hours)
    recent = []
    for e in events:
        ts = _parse_iso(e.get("timestamp"))
        if ts is not None and start <= ts <= end:
            recent.append(e)

    invoices = [e for e in recent if e.get("event_type") == EVENT_INVOICE_GENERATED]
    completed = [e for e in recent if e.get("event_type") == EVENT_PAYMENT_COMPLETED]
    failed = [e for e in recent if e.get("event_type") == EVENT_PAYMENT_FAILED]
    payments = len(completed) + len(failed)

    volume = sum((Decimal(str(e.get("amount_usd") or 0)) for e in completed), Decimal("0"))
    durations = [float(e["duration_seconds"]) for e in completed if e.get("duration_seconds") is not None]

    error_counts: dict[str, int] = {}
    for e in recent:
        if e.get("event_type") in {EVENT_PAYMENT_FAILED, EVENT_API_ERROR}:
            code = e.get("error_code") or "UNKNOWN"
            error_counts[code] = error_counts.get(code, 0) + 1

    return {
        "total_invoices": len(invoices),
        "total_payments": payments,
        "successful_payments": len(completed),
        "failed_payments": len(failed),
        "total_volume_usd": volume,
        "average_amount_usd": (volume / len(completed)).quantize(Decimal("0.01")) if completed else Decimal("0"),
        "average_completion_seconds": round(sum(durations) / len(durations), 2) if durations else 0,
        "success_rate": round(len(completed) / payments * 100, 2) if payments else 0,
        "fallbacks_used": sum(1 for e in recent if e.get("event_type") == EVENT_FALLBACK_USED),
        "expired_invoices": sum(1 for e in recent if e.get("event_type") == EVENT_INVOICE_EXPIRED),
        "error_counts": error_counts,
        "period_start": start.isoformat(),
        "period_end": end.isoformat(),
    }


def load_events(store: BaseStore, merchant_id: str) -> list[dict]:
    return store.load_list(_events_key(merchant_id))


# Invoices

def load_invoices(store: BaseStore, merchant_id: str) -> list[dict]:
    return store.load_list(_invoices_key(merchant_id))


def payment_hash_of(payment_request: Optional[str]) -> Optional[str]:
    if not payment_request:
        return None
    try:
        return (decode_bolt11(payment_request).payment_hash or "").lower() or None
    except (Bolt11Exception, ValueError, TypeError) as exc:
        json_log("warning", "lightning.bolt11_undecodable", error=str(exc))
        return None


def find_invoice(store: BaseStore, merchant_id: str, ref: str) -> Optional[dict]:
    """Look an invoice up by id, bolt11 string or payment hash."""
    ref_hash = (ref or "").strip().lower()
    for inv in load_invoices(store, merchant_id):
        if inv.get("id") == ref or inv.get("payment_request") == ref:
            return inv
        if ref_hash and inv.get("payment_hash") == ref_hash:
            return inv
    return None


def save_invoice(store: BaseStore, merchant_id: str, invoice: dict) -> dict:
    key = _invoices_key(merchant_id)
    with store.locked():
        rows = store.load_list(key)
        rows = [r for r in rows if r.get("id") != invoice["id"]]
        rows.append(invoice)
        store.save_list(key, rows)
    return invoice


def generate_invoice(
    store: BaseStore,
    merchant_id: str,
    lightning_address: Optional[str],
    amount_usd: Decimal,
    amount_sats: int,
    description: Optional[str] = None,
    transaction_id: Optional[str] = None,
    client: Optional[LnurlClient] = None,
    environment: Optional[str] = None,
) -> dict:
    check_amount("lightning", amount_usd)
    env = (environment or settings.lightning_environment or "sandbox").lower()
    client = client or LnurlClient()
    desc = description or f"{INVOICE_DESCRIPTION_PREFIX} - ${amount_usd}"
    created = datetime.now(timezone.utc)
    started = time.monotonic()

    try:
        if not lightning_address:
            raise BitAgoraError(BitAgoraErrorType.CRYPTO_ERROR, "no lightning address configured")
        res = client.request_invoice(lightning_address, amount_sats * 1000, comment=desc)
        invoice = {
            "id": new_id(),
            "payment_request": res["payment_request"],
            "payment_hash": payment_hash_of(res["payment_request"]),
            "verify_url": res.get("verify_url"),
            "fallback": False,
        }
    except BitAgoraError as exc:
        record_event(store, merchant_id, EVENT_API_ERROR, operation="generate_invoice", error_code=exc.type.value, error=exc.message)
        if env == "production":
            json_log("error", "lightning.invoice_failed", merchant_id=merchant_id, error=exc.message)
            if exc.type == BitAgoraErrorType.VALIDATION_ERROR:
                raise
            raise BitAgoraError(BitAgoraErrorType.NETWORK_ERROR, f"lightning invoice generation failed: {exc.message}") from exc
        json_log("warning", "lightning.fallback_invoice", merchant_id=merchant_id, error=exc.message)
        invoice = {
            "id": f"fallback-{int(created.timestamp() * 1000)}",
            "payment_request": FALLBACK_INVOICE,
            "payment_hash": None,
            "verify_url": None,
            "fallback": True,
        }
        record_event(store, merchant_id, EVENT_FALLBACK_USED, invoice_id=invoice["id"], reason=exc.message)

    invoice.update(
        {
            "amount_usd": amount_usd,
            "amount_sats": amount_sats,
            "description": desc,
            "state": "UNPAID",
            "transaction_id": transaction_id,
            "created_at": created.isoformat(),
            "expires_at": (created + timedelta(seconds=INVOICE_EXPIRY_SECONDS)).isoformat(),
            "paid_at": None,
        }
    )
    save_invoice(store, merchant_id, invoice)
    record_event(
        store,
        merchant_id,
        EVENT_INVOICE_GENERATED,
        invoice_id=invoice["id"],
        amount_usd=amount_usd,
        duration_seconds=round(time.monotonic() - started, 3),
    )
    return invoice


def _duration_since(created_at: Optional[str], end: datetime) -> Optional[float]:
    start = _parse_iso(created_at)
    if start is None:
        return None
    return round((end - start).total_seconds(), 3)


def mark_paid(store: BaseStore, merchant_id: str, invoice: dict, preimage: Optional[str] = None) -> dict:
    if invoice.get("state") == "PAID":
        return invoice
    now = datetime.now(timezone.utc)
    invoice["state"] = "PAID"
    invoice["paid_at"] = now.isoformat()
    if preimage:
        invoice["preimage"] = preimage
    save_invoice(store, merchant_id, invoice)
    record_event(
        store,
        merchant_id,
        EVENT_PAYMENT_COMPLETED,
        invoice_id=invoice["id"],
        amount_usd=invoice.get("amount_usd"),
        duration_seconds=_duration_since(invoice.get("created_at"), now),
    )
    return invoice


def mark_failed(store: BaseStore, merchant_id: str, invoice: dict, reason: str, error_code: str = "PAYMENT_FAILED") -> dict:
    if invoice.get("state") in {"PAID", "FAILED"}:
        return invoice
    invoice["state"] = "FAILED"
    invoice["error"] = reason
    save_invoice(store, merchant_id, invoice)
    record_event(
        store,
        merchant_id,
        EVENT_PAYMENT_FAILED,
        invoice_id=invoice["id"],
        amount_usd=invoice.get("amount_usd"),
        error_code=error_code,
        error=reason,
    )
    return invoice


def refresh_status(store: BaseStore, merchant_id: str, invoice: dict, client: Optional[LnurlClient] = None) -> dict:
    if invoice.get("state") in {"PAID", "FAILED", "EXPIRED"}:
        return invoice

    if invoice.get("verify_url"):
        client = client or LnurlClient(attempts=1)
        try:
            res = client.verify(invoice["verify_url"])
        except BitAgoraError as exc:
            record_event(store, merchant_id, EVENT_API_ERROR, operation="verify_invoice", error_code=exc.type.value, error=exc.message)
            json_log("warning", "lightning.verify_failed", invoice_id=invoice["id"], error=exc.message)
        else:
            if res["settled"]:
                return mark_paid(store, merchant_id, invoice, res.get("preimage"))

    expires = _parse_iso(invoice.get("expires_at"))
    if expires is not None and datetime.now(timezone.utc) >= expires:
        invoice["state"] = "EXPIRED"
        save_invoice(store, merchant_id, invoice)
        record_event(store, merchant_id, EVENT_INVOICE_EXPIRED, invoice_id=invoice["id"], amount_usd=invoice.get("amount_usd"))
    return invoice


def status_view(invoice: dict) -> dict:
    state = invoice.get("state") or "UNPAID"
    return {**invoice, "message": STATUS_MESSAGES.get(state, "")}
