from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.routers import onboarding as onboarding_router
from backend.app.routers import payment_settings as ps_router
from backend.app.routers import qr_providers as qr_router
from backend.app.routers import tax_settings as tax_router
from backend.app.store import get_store

M = "m1"
BTC_ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"


def test_tax_settings_default_preset_and_calculation():
    res = tax_router.get_tax_settings(merchant_id=M)
    assert res["tax_settings"]["country"] == "Argentina"
    assert "US" in res["presets"]

    doc = tax_router.apply_preset(tax_router.PresetIn(country="us", region="TX"), merchant_id=M)["tax_settings"]
    assert doc["default_rate"] == 0.0625
    calc = tax_router.calculate_tax(tax_router.CalculateIn(items=[{"price": "100", "quantity": 1}]), merchant_id=M)
    assert calc["calculation"]["total"] == Decimal("106.25")

    with pytest.raises(HTTPException) as exc_info:
        tax_router.apply_preset(tax_router.PresetIn(country="XX"), merchant_id=M)
    assert exc_info.value.detail == "unknown tax preset: XX"


def test_tax_settings_put_validates_and_stores():
    body = {
        "enabled": True,
        "default_rate": 0.15,
        "tax_type": "gst",
        "country": "New Zealand",
        "include_tax_in_price": False,
        "tax_name": "GST",
    }
    doc = tax_router.save_tax_settings(tax_router.TaxConfigurationIn(**body), merchant_id=M)["tax_settings"]
    assert doc["tax_type"] == "GST"
    assert tax_router.load_tax_settings(get_store(), M)["tax_name"] == "GST"
    with pytest.raises(ValueError):
        tax_router.TaxConfigurationIn(**{**body, "default_rate": 1.5})


def test_onboarding_progress_walks_steps():
    progress = onboarding_router.get_progress(merchant_id=M)["progress"]
    assert progress["current_step"] == "admin-setup"
    assert progress["onboarding_completed"] is False

    upd = onboarding_router.OnboardingIn(admin_setup=True, business_setup=True)
    progress = onboarding_router.update_progress(upd, merchant_id=M)["progress"]
    assert progress["current_step"] == "payment-setup"
    assert progress["admin_setup_completed_at"]

    upd = onboarding_router.OnboardingIn(payment_setup=True, qr_setup=True)
    progress = onboarding_router.update_progress(upd, merchant_id=M)["progress"]
    assert progress["current_step"] == "completed"
    assert progress["onboarding_completed"] is True
    assert progress["onboarding_completed_at"]


def test_payment_settings_validate_enabled_wallets():
    assert ps_router.get_payment_settings(merchant_id=M) == {"settings": None, "message": "no payment settings found"}

    with pytest.raises(HTTPException) as exc_info:
        ps_router.save_payment_settings(
            ps_router.PaymentSettingsIn(accept_bitcoin=True, bitcoin_wallet_address="not-an-address"), merchant_id=M
        )
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail.startswith("bitcoin_wallet_address:")

    saved = ps_router.save_payment_settings(
        ps_router.PaymentSettingsIn(accept_cash=True, accept_bitcoin=True, bitcoin_wallet_address=f" {BTC_ADDRESS} "), merchant_id=M
    )["settings"]
    assert saved["bitcoin_wallet_address"] == BTC_ADDRESS

    # Partial updates merge over what is stored.
    merged = ps_router.save_payment_settings(ps_router.PaymentSettingsIn(accept_cards=True), merchant_id=M)["settings"]
    assert merged["accept_bitcoin"] is True
    assert merged["id"] == saved["id"]


def test_credentials_are_encrypted_and_masked():
    body = ps_router.CredentialsIn(processor_name="Stripe", api_key="sk_test_12345678", webhook_secret="whsec_abcd9876")
    cred = ps_router.upsert_credentials(body, merchant_id=M)["credentials"]
    assert cred["processor_name"] == "stripe"
    assert cred["api_key"] == "••••5678"
    assert cred["client_id"] is None
    raw = get_store().load_list(ps_router.credentials_key(M))[0]
    assert "sk_test_12345678" not in str(raw)

    ps_router.upsert_credentials(ps_router.CredentialsIn(processor_name="stripe", environment="production"), merchant_id=M)
    listed = ps_router.list_credentials(merchant_id=M)["credentials"]
    assert len(listed) == 1
    assert listed[0]["environment"] == "production"
    assert listed[0]["api_key"] == "••••5678"

    assert ps_router.check_credentials("STRIPE", merchant_id=M)["test_status"] == "success"
    with pytest.raises(HTTPException) as exc_info:
        ps_router.check_credentials("paypal", merchant_id=M)
    assert exc_info.value.status_code == 404


def test_fees_seed_quote_and_replace():
    fees = ps_router.list_fees(merchant_id=M)["fees"]
    assert len(fees) == len(ps_router.DEFAULT_FEES)
    quote = ps_router.quote(ps_router.QuoteIn(payment_method="Stripe", amount=Decimal("100")), merchant_id=M)
    assert quote["fee"] == Decimal("3.20")
    assert quote["net_amount"] == Decimal("96.80")
    assert ps_router.quote(ps_router.QuoteIn(payment_method="venmo", amount=Decimal("10")), merchant_id=M)["fee"] == Decimal("0.00")

    stripe_id = next(f["id"] for f in fees if f["payment_method"] == "stripe")
    rows = ps_router.replace_fees(
        ps_router.FeesIn(fees=[{"payment_method": "stripe", "percentage_fee": "2.5", "fixed_fee": "0.25"}]), merchant_id=M
    )["fees"]
    assert rows[0]["id"] == stripe_id
    with pytest.raises(HTTPException) as exc_info:
        ps_router.replace_fees(
            ps_router.FeesIn(fees=[{"payment_method": "cash", "percentage_fee": 0}, {"payment_method": "CASH", "percentage_fee": 1}]),
            merchant_id=M,
        )
    assert exc_info.value.status_code == 400


def test_qr_providers_crud():
    saved = qr_router.save_provider(
        qr_router.QRProviderIn(provider_name="Mercado Pago", provider_region="Argentina", enabled=True, api_key="mp-secret"),
        merchant_id=M,
    )["provider"]
    assert saved["has_api_key"] is True
    assert "api_key_enc" not in saved

    again = qr_router.save_provider(qr_router.QRProviderIn(id=saved["id"], provider_name="Mercado Pago", enabled=False), merchant_id=M)
    assert again["provider"]["has_api_key"] is True
    assert len(qr_router.list_providers(merchant_id=M)["providers"]) == 1

    config = {
        "Argentina": [{"id": "mp", "name": "Mercado Pago", "enabled": True, "default_fee": "3.5", "qr_code": True}],
        "Custom": [{"name": "Shop QR", "enabled": True, "custom_fee": "1.0", "default_fee": "9"}],
    }
    providers = qr_router.replace_configuration(config, merchant_id=M)["providers"]
    assert [p["provider_type"] for p in providers] == ["regional", "custom"]
    assert providers[0]["qr_code_file_path"] == "qr-codes/mp.png"
    assert providers[1]["percentage_fee"] == 1.0

    assert qr_router.delete_provider("mp", merchant_id=M) == {"ok": True}
    with pytest.raises(HTTPException) as exc_info:
        qr_router.delete_provider("mp", merchant_id=M)
    assert exc_info.value.detail == "qr provider not found"


def test_qr_bulk_replace_keeps_stored_secrets_and_checks_fees():
    first = qr_router.save_provider(
        qr_router.QRProviderIn(id="mp", provider_name="Mercado Pago", provider_region="Argentina", api_key="mp-secret"),
        merchant_id=M,
    )["provider"]

    config = {"Argentina": [{"id": "mp", "name": "Mercado Pago", "enabled": True, "default_fee": "2.9"}]}
    replaced = qr_router.replace_configuration(config, merchant_id=M)["providers"][0]
    assert replaced["has_api_key"] is True
    assert replaced["created_at"] == first["created_at"]
    assert replaced["percentage_fee"] == 2.9

    for bad in ({"default_fee": "150"}, {"custom_fee": "-1"}, {"fixed_fee": "-0.5"}, {"default_fee": "abc"}):
        with pytest.raises(HTTPException) as exc_info:
            qr_router.replace_configuration({"Argentina": [{"id": "mp", "name": "Mercado Pago", **bad}]}, merchant_id=M)
        assert exc_info.value.status_code == 400
    assert qr_router.list_providers(merchant_id=M)["providers"][0]["percentage_fee"] == 2.9
