import json

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from backend.app import main
from backend.app.config import settings
from backend.app.deps import get_merchant_id
from backend.app.errors import BitAgoraError, BitAgoraErrorType, http_status_for, user_message
from backend.app.routers import debug as debug_router
from backend.app.routers import employees as employees_router
from backend.app.store import MemoryStore, StoreError, get_store


def _request(path="/crypto/qr", request_id="rid-1"):
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": path,
            "headers": [(b"x-request-id", request_id.encode())],
            "query_string": b"",
        }
    )


def _body(resp):
    return json.loads(resp.body)


def test_error_types_map_to_status_and_user_message():
    assert http_status_for(BitAgoraError(BitAgoraErrorType.AUTHENTICATION_ERROR, "x")) == 401
    assert http_status_for(BitAgoraError(BitAgoraErrorType.PAYMENT_ERROR, "x")) == 402
    assert http_status_for(BitAgoraError(BitAgoraErrorType.NETWORK_ERROR, "x")) == 503
    assert http_status_for(BitAgoraError(BitAgoraErrorType.CRYPTO_ERROR, "x")) == 400
    assert user_message(BitAgoraError(BitAgoraErrorType.VALIDATION_ERROR, "amount too small")) == "amount too small"
    assert user_message(BitAgoraError(BitAgoraErrorType.NETWORK_ERROR, "timeout")).startswith("Network error")
    assert user_message(ValueError("boom")) == "boom"


def test_domain_error_handler_hides_internals_outside_dev(monkeypatch):
    exc = BitAgoraError(BitAgoraErrorType.CRYPTO_ERROR, "bitcoin payments are not enabled")
    resp = main._bitagora_error(_request(), exc)
    assert resp.status_code == 400
    body = _body(resp)
    assert body["error_type"] == "CRYPTO_ERROR"
    assert body["error"] == "bitcoin payments are not enabled"

    monkeypatch.setattr(settings, "env", "prod")
    body = _body(main._bitagora_error(_request(), exc))
    assert "error" not in body
    assert body["detail"].startswith("Crypto payment configuration error")


def test_store_and_unhandled_errors():
    resp = main._store_error(_request(), StoreError("disk full"))
    assert resp.status_code == 503
    assert _body(resp)["detail"] == "store unavailable"

    resp = main._unhandled_exception(_request(request_id="rid-9"), RuntimeError("kaboom"))
    assert resp.status_code == 500
    assert _body(resp)["request_id"] == "rid-9"


class _DownStore(MemoryStore):
    def ping(self):
        raise StoreError("connection refused")


def test_health_endpoints(monkeypatch):
    assert main.health(_request("/health"))["status"] == "ok"
    assert main.health_ready(_request("/health/ready"))["status"] == "ready"
    assert main.health_live(_request("/health/live"))["service"] == "bitagora-pos-api"
    assert main.meta()["uptime_seconds"] >= 0

    monkeypatch.setattr(main, "get_store", lambda: _DownStore())
    resp = main.health(_request("/health"))
    assert resp.status_code == 503
    assert _body(resp)["status"] == "degraded"
    assert main.health_ready(_request("/health/ready")).status_code == 503


def test_routes_are_mounted():
    expected = {
        "list_employees": "/employees",
        "create_transaction": "/transactions",
        "generate_qr": "/crypto/qr",
        "webhook": "/lightning/webhook",
        "create_payment": "/payments",
        "list_flags": "/feature-flags",
        "calculate_tax": "/tax-settings/calculate",
        "quote": "/payment-fees/quote",
        "clear_all": "/debug/clear-all",
    }
    for name, path in expected.items():
        assert main.app.url_path_for(name) == path
    assert main.app.url_path_for("get_payment_status", payment_id="p1") == "/payment-status/p1"


def test_merchant_header_defaults():
    assert get_merchant_id(" shop-7 ") == "shop-7"
    assert get_merchant_id(None) == settings.default_merchant_id
    assert get_merchant_id("  ") == settings.default_merchant_id


def test_debug_export_and_clear(monkeypatch):
    employees_router.list_employees(merchant_id="m1")
    exported = debug_router.export_all()
    emps = exported["data"]["bitagora_employees_m1"]
    assert emps and all("pin_hash" not in e for e in emps)

    assert debug_router.clear_all() == {"ok": True, "removed": 1}
    assert get_store().keys() == []

    monkeypatch.setattr(settings, "env", "production")
    with pytest.raises(HTTPException) as exc_info:
        debug_router.clear_all()
    assert exc_info.value.status_code == 404
