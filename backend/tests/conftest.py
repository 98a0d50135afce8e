import os
import sys

import pytest
from cryptography.fernet import Fernet


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.app import lightning as lightning_mod  # noqa: E402
from backend.app import payment_status as payment_status_mod  # noqa: E402
from backend.app.config import settings  # noqa: E402
from backend.app.errors import BitAgoraError, BitAgoraErrorType  # noqa: E402
from backend.app.exchange import exchange_service  # noqa: E402
from backend.app.store import MemoryStore, set_store  # noqa: E402

BTC_USD = 50000


def _offline(url):
    raise BitAgoraError(BitAgoraErrorType.NETWORK_ERROR, f"offline: {url}")


def _undecodable(pr):
    raise ValueError(f"not a signed bolt11 invoice: {pr}")


@pytest.fixture(autouse=True)
def store(monkeypatch):
    """Fresh in-memory store, fixed BTC price, and no outbound HTTP for every test."""
    mem = MemoryStore()
    set_store(mem)
    monkeypatch.setattr(settings, "env", "local")
    monkeypatch.setattr(settings, "secret_key", Fernet.generate_key().decode())
    monkeypatch.setattr(settings, "lightning_environment", "sandbox")
    monkeypatch.setattr(settings, "bitcoin_network", "mainnet")

    exchange_service.clear_cache()
    monkeypatch.setattr(exchange_service, "_fetch", lambda _url: {"USD": BTC_USD})
    monkeypatch.setattr(lightning_mod, "http_get_json", _offline)
    monkeypatch.setattr(lightning_mod, "RETRY_BASE_DELAY", 0)
    monkeypatch.setattr(lightning_mod, "decode_bolt11", _undecodable)
    monkeypatch.setattr(payment_status_mod, "http_get_json", _offline)
    yield mem
    exchange_service.clear_cache()
    set_store(None)

