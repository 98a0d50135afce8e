import threading
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Optional

from .config import settings
from .errors import BitAgoraError
from .http_client import http_get_json
from .logs import json_log

SATS_PER_BTC = Decimal("100000000")
DUST_LIMIT_SATS = 546
CACHE_SECONDS = 5 * 60
FALLBACK_BTC_USD = Decimal("45000")
MIN_SANE_BTC_USD = Decimal("1000")
MAX_SANE_BTC_USD = Decimal("1000000")
USDT_USD = Decimal("1.00")

_BTC_Q = Decimal("0.00000001")
_USDT_Q = Decimal("0.000001")


class ExchangeRateService:
    """
    BTC/USD rate with a 5 minute cache.

    On upstream failure the last cached rate is reused (even if stale), and
    only when nothing was ever fetched does the fixed fallback kick in.
    """

    def __init__(self, fetch: Optional[Callable[[str], Any]] = None, clock: Callable[[], float] = time.monotonic):
        self._fetch = fetch or http_get_json
        self._clock = clock
        self._lock = threading.Lock()
        self._rates: Optional[dict[str, Decimal]] = None
        self._fetched_at = 0.0
        self.source = "none"

    def clear_cache(self) -> None:
        with self._lock:
            self._rates = None
            self._fetched_at = 0.0
            self.source = "none"

    def _fetch_btc_usd(self) -> Decimal:
        data = self._fetch(settings.btc_price_api_url)
        raw = data.get("USD") if isinstance(data, dict) else None
        if raw is None:
            raise ValueError("price response has no USD field")
        rate = Decimal(str(raw))
        if rate < MIN_SANE_BTC_USD or rate > MAX_SANE_BTC_USD:
            raise ValueError(f"btc rate out of range: {rate}")
        return rate

    def get_rates(self) -> dict[str, Decimal]:
        with self._lock:
            now = self._clock()
            if self._rates is not None and self.source == "live" and now - self._fetched_at < CACHE_SECONDS:
                return dict(self._rates)
            try:
                btc = self._fetch_btc_usd()
            except (BitAgoraError, ValueError, ArithmeticError) as exc:
                if self._rates is not None:
                    json_log("warning", "exchange.rate_stale", error=str(exc))
                    return dict(self._rates)
                json_log("warning", "exchange.rate_fallback", error=str(exc), fallback=FALLBACK_BTC_USD)
                self._rates = {"bitcoin": FALLBACK_BTC_USD, "usdt": USDT_USD}
                self._fetched_at = now
                self.source = "fallback"
                return dict(self._rates)
            self._rates = {"bitcoin": btc, "usdt": USDT_USD}
            self._fetched_at = now
            self.source = "live"
            return dict(self._rates)

    def usd_to_btc(self, amount_usd: Decimal) -> dict[str, Any]:
        rate = self.get_rates()["bitcoin"]
        btc = (Decimal(amount_usd) / rate).quantize(_BTC_Q, rounding=ROUND_HALF_UP)
        sats = int((btc * SATS_PER_BTC).to_integral_value(rounding=ROUND_HALF_UP))
        if sats < DUST_LIMIT_SATS:
            min_usd = (Decimal(DUST_LIMIT_SATS) * rate / SATS_PER_BTC).quantize(Decimal("0.01"))
            return {
                "success": False,
                "crypto_amount": Decimal("0"),
                "formatted_amount": "0.00000000",
                "exchange_rate": rate,
                "error": f"payment too small - minimum is {DUST_LIMIT_SATS} satoshis (~${min_usd})",
            }
        return {"success": True, "crypto_amount": btc, "formatted_amount": f"{btc:.8f}", "exchange_rate": rate, "satoshis": sats}

    def usd_to_sats(self, amount_usd: Decimal) -> dict[str, Any]:
        rate = self.get_rates()["bitcoin"]
        sats = int((Decimal(amount_usd) / rate * SATS_PER_BTC).to_integral_value(rounding=ROUND_HALF_UP))
        if sats < 1:
            return {
                "success": False,
                "crypto_amount": 0,
                "formatted_amount": "0",
                "exchange_rate": rate,
                "error": "payment too small - minimum is 1 satoshi",
            }
        return {"success": True, "crypto_amount": sats, "formatted_amount": f"{sats:,}", "exchange_rate": rate}

    def usd_to_usdt(self, amount_usd: Decimal) -> dict[str, Any]:
        rate = self.get_rates()["usdt"]
        usdt = (Decimal(amount_usd) / rate).quantize(_USDT_Q, rounding=ROUND_HALF_UP)
        return {"success": True, "crypto_amount": usdt, "formatted_amount": f"{usdt:.6f}", "exchange_rate": rate}

    def convert(self, amount_usd: Decimal, crypto_type: str) -> dict[str, Any]:
        kind = (crypto_type or "").strip().lower()
        if kind in {"bitcoin", "btc"}:
            return self.usd_to_btc(amount_usd)
        if kind in {"lightning", "sats"}:
            return self.usd_to_sats(amount_usd)
        if kind.startswith("usdt"):
            return self.usd_to_usdt(amount_usd)
        return {"success": False, "crypto_amount": Decimal("0"), "formatted_amount": "0", "error": f"cryptocurrency not supported: {crypto_type}"}


def format_crypto_amount(amount, symbol: str) -> str:
    sym = (symbol or "").upper()
    if sym == "BTC":
        return f"{Decimal(str(amount)):.8f} BTC"
    if sym == "USDT":
        return f"{Decimal(str(amount)):.6f} USDT"
    if sym == "SATS":
        return f"{int(amount):,} sats"
    return f"{amount} {symbol}"


exchange_service = ExchangeRateService()
