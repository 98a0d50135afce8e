from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app import lightning as ln
from backend.app import payment_status as ps
from backend.app.errors import BitAgoraError, BitAgoraErrorType
from backend.app.routers import crypto as crypto_router
from backend.app.routers import lightning as lightning_router
from backend.app.routers import payment_settings as ps_router
from backend.app.routers import payments as payments_router
from backend.app.routers import transactions as tx_router
from backend.app.sales import find_transaction
from backend.app.store import get_store

M = "m1"
BTC_ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"


def _enable_wallets():
    ps_router.save_payment_settings(
        ps_router.PaymentSettingsIn(
            accept_bitcoin=True,
            bitcoin_wallet_address=BTC_ADDRESS,
            accept_bitcoin_lightning=True,
            lightning_wallet_address="shop@getalby.com",
        ),
        merchant_id=M,
    )


def _transaction(method="bitcoin", total="100.00", status="pending"):
    data = tx_router.TransactionIn(items=[], total=total, payment_method=method, payment_status=status, employee_id="emp_001")
    return tx_router.create_transaction(data, merchant_id=M)["transaction"]


def test_rates_and_conversion():
    res = crypto_router.get_rates()
    assert res["rates"]["bitcoin"] == Decimal("50000")
    assert res["source"] == "live"

    btc = crypto_router.convert(crypto_router.ConvertIn(amount_usd="100", crypto_type="BTC"))
    assert btc["crypto_type"] == "bitcoin"
    assert btc["display"] == "0.00200000 BTC"
    sats = crypto_router.convert(crypto_router.ConvertIn(amount_usd="1", crypto_type="lightning"))
    assert sats["display"] == "2,000 sats"

    with pytest.raises(BitAgoraError) as exc_info:
        crypto_router.convert(crypto_router.ConvertIn(amount_usd="1", crypto_type="dogecoin"))
    assert exc_info.value.type == BitAgoraErrorType.VALIDATION_ERROR


def test_validate_address_and_currency_info():
    res = crypto_router.validate(crypto_router.ValidateAddressIn(address=BTC_ADDRESS, crypto_type="bitcoin"))
    assert res["validation"]["is_valid"] is True
    info = crypto_router.get_currency_info("usdt_ethereum")
    assert info["supported"] is True
    assert info["info"]["symbol"] == "USDT"


def test_qr_requires_enabled_wallet():
    with pytest.raises(BitAgoraError) as exc_info:
        crypto_router.generate_qr(crypto_router.QRIn(crypto_type="bitcoin", amount_usd="100"), merchant_id=M)
    assert exc_info.value.type == BitAgoraErrorType.CRYPTO_ERROR


def test_bitcoin_qr_with_image():
    _enable_wallets()
    res = crypto_router.generate_qr(crypto_router.QRIn(crypto_type="bitcoin", amount_usd="100", include_image=True), merchant_id=M)
    assert res["qr_content"] == f"bitcoin:{BTC_ADDRESS}?amount=0.00200000"
    assert res["qr_image"].startswith("data:image/png;base64,")


def test_lightning_qr_uses_invoice():
    _enable_wallets()
    res = crypto_router.generate_qr(crypto_router.QRIn(crypto_type="lightning", amount_usd="10"), merchant_id=M)
    assert res["crypto_amount"] == 20000
    assert res["payment_request"] == ln.FALLBACK_INVOICE
    assert res["qr_content"] == f"lightning:{ln.FALLBACK_INVOICE}"
    assert "qr_image" not in res


def test_lightning_invoice_webhook_completes_transaction():
    tx = _transaction(method="lightning", total="10.00")
    inv = lightning_router.generate_invoice(lightning_router.InvoiceIn(amount="10", transaction_id=tx["id"]), merchant_id=M)["invoice"]
    assert inv["state"] == "UNPAID"
    assert inv["message"] == "Waiting for payment..."

    with pytest.raises(HTTPException) as exc_info:
        lightning_router.webhook(lightning_router.WebhookIn(), merchant_id=M)
    assert exc_info.value.status_code == 400
    with pytest.raises(HTTPException) as exc_info:
        lightning_router.webhook(lightning_router.WebhookIn(invoice_id="nope"), merchant_id=M)
    assert exc_info.value.status_code == 404

    res = lightning_router.webhook(lightning_router.WebhookIn(invoice_id=inv["id"], preimage="ab"), merchant_id=M)
    assert res["invoice"]["state"] == "PAID"
    assert find_transaction(get_store(), M, tx["id"])["payment_status"] == "completed"
    assert lightning_router.invoice_status(inv["id"], merchant_id=M)["invoice"]["state"] == "PAID"


def test_lightning_webhook_failure_fails_transaction():
    tx = _transaction(method="lightning", total="10.00")
    inv = lightning_router.generate_invoice(lightning_router.InvoiceIn(amount="10", transaction_id=tx["id"]), merchant_id=M)["invoice"]
    lightning_router.webhook(lightning_router.WebhookIn(invoice_id=inv["id"], paid=False, reason="declined"), merchant_id=M)
    assert find_transaction(get_store(), M, tx["id"])["payment_status"] == "failed"


def test_lightning_analytics():
    lightning_router.generate_invoice(lightning_router.InvoiceIn(amount="5"), merchant_id=M)
    metrics = lightning_router.analytics(window_hours=24, merchant_id=M)["metrics"]
    assert metrics["total_invoices"] == 1
    assert metrics["fallbacks_used"] == 1
    with pytest.raises(HTTPException) as exc_info:
        lightning_router.analytics(window_hours=0, merchant_id=M)
    assert exc_info.value.status_code == 400
    with pytest.raises(HTTPException):
        lightning_router.invoice_status("missing", merchant_id=M)


def test_create_bitcoin_payment():
    _enable_wallets()
    tx = _transaction()
    payment = payments_router.create_payment(payments_router.PaymentIn(transaction_id=tx["id"], method="bitcoin"), merchant_id=M)["payment"]
    assert payment["status"] == "pending"
    assert payment["address"] == BTC_ADDRESS
    assert payment["crypto_amount"] == Decimal("0.00200000")
    assert payment["amount_usd"] == Decimal("100.00")
    assert ps.find_payment(get_store(), M, payment["id"]) is not None


def test_create_lightning_and_manual_payments():
    _enable_wallets()
    tx = _transaction(method="lightning", total="10.00")
    p = payments_router.create_payment(payments_router.PaymentIn(transaction_id=tx["id"], method="lightning"), merchant_id=M)["payment"]
    assert p["invoice_id"]
    assert p["crypto_amount"] == 20000

    card_tx = _transaction(method="card", total="12.00")
    p = payments_router.create_payment(payments_router.PaymentIn(transaction_id=card_tx["id"], method="card"), merchant_id=M)["payment"]
    assert p["crypto_amount"] is None
    assert p["address"] is None


def test_create_payment_rejections():
    with pytest.raises(HTTPException) as exc_info:
        payments_router.create_payment(payments_router.PaymentIn(transaction_id="nope", method="bitcoin"), merchant_id=M)
    assert exc_info.value.status_code == 404

    done = _transaction(method="cash", status="completed")
    with pytest.raises(HTTPException) as exc_info:
        payments_router.create_payment(payments_router.PaymentIn(transaction_id=done["id"], method="cash"), merchant_id=M)
    assert exc_info.value.status_code == 409

    with pytest.raises(BitAgoraError) as exc_info:
        payments_router.create_payment(payments_router.PaymentIn(transaction_id=_transaction()["id"], method="bitcoin"), merchant_id=M)
    assert exc_info.value.type == BitAgoraErrorType.CRYPTO_ERROR


def test_payment_actions_update_transaction():
    tx = _transaction(method="card", total="12.00")
    p = payments_router.create_payment(payments_router.PaymentIn(transaction_id=tx["id"], method="card"), merchant_id=M)["payment"]

    with pytest.raises(HTTPException) as exc_info:
        payments_router.update_payment_status(p["id"], payments_router.PaymentActionIn(action="refund"), merchant_id=M)
    assert exc_info.value.detail == "invalid action"

    res = payments_router.update_payment_status(p["id"], payments_router.PaymentActionIn(action="complete"), merchant_id=M)
    assert res["payment"]["status"] == "completed"
    assert res["message"] == "payment complete action processed"
    assert find_transaction(get_store(), M, tx["id"])["payment_status"] == "completed"

    with pytest.raises(HTTPException) as exc_info:
        payments_router.update_payment_status(p["id"], payments_router.PaymentActionIn(action="cancel"), merchant_id=M)
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "payment already completed"


def test_expired_payment_fails_transaction_on_read():
    tx = _transaction(method="card", total="12.00")
    p = payments_router.create_payment(payments_router.PaymentIn(transaction_id=tx["id"], method="card"), merchant_id=M)["payment"]
    stored = ps.find_payment(get_store(), M, p["id"])
    stored["expires_at"] = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
    ps.save_payment(get_store(), M, stored)

    res = payments_router.get_payment_status(p["id"], merchant_id=M)
    assert res["payment"]["status"] == "expired"
    assert find_transaction(get_store(), M, tx["id"])["payment_status"] == "failed"
    with pytest.raises(HTTPException) as exc_info:
        payments_router.update_payment_status(p["id"], payments_router.PaymentActionIn(action="cancel"), merchant_id=M)
    assert exc_info.value.detail == "payment already expired"
    with pytest.raises(HTTPException) as exc_info:
        payments_router.get_payment_status("missing", merchant_id=M)
    assert exc_info.value.status_code == 404
