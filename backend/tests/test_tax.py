from decimal import Decimal

from backend.app.tax import TAX_PRESETS, TaxCalculator, default_configuration, format_tax_amount, recommended_preset


def test_exclusive_sales_tax_skips_exempt_lines():
    calc = TaxCalculator(TAX_PRESETS["US"])
    res = calc.calculate(
        [
            {"price": Decimal("10.00"), "quantity": 2},
            {"price": Decimal("5.00"), "quantity": 1, "tax_exempt": True},
        ]
    )
    assert res["subtotal"] == Decimal("25.00")
    assert res["primary_tax"] == Decimal("1.60")
    assert res["total_tax"] == Decimal("1.60")
    assert res["total"] == Decimal("26.60")
    assert res["breakdown"]["primary_tax_name"] == "Sales Tax"


def test_inclusive_iva_extracts_tax_from_price():
    res = TaxCalculator(TAX_PRESETS["AR"]).calculate([{"price": 121, "quantity": 1}])
    assert res["subtotal"] == Decimal("100.00")
    assert res["primary_tax"] == Decimal("21.00")
    assert res["total"] == Decimal("121.00")


def test_brazil_secondary_tax_in_breakdown():
    res = TaxCalculator(TAX_PRESETS["BR"]).calculate([{"price": "127.25", "quantity": 1}])
    assert res["primary_tax"] == Decimal("18.00")
    assert res["secondary_tax"] == Decimal("9.25")
    assert res["total_tax"] == Decimal("27.25")
    assert res["total"] == Decimal("127.25")
    assert res["breakdown"]["secondary_tax_name"] == "PIS/COFINS"


def test_disabled_config_charges_no_tax():
    res = TaxCalculator(TAX_PRESETS["DEFAULT"]).calculate([{"price": "9.99", "quantity": 3}])
    assert res["total_tax"] == Decimal("0")
    assert res["total"] == res["subtotal"] == Decimal("29.97")


def test_manual_rate_only_when_allowed():
    cfg = {**TAX_PRESETS["US"], "manual_tax_rate": 0.10, "manual_tax_name": "City Tax"}
    res = TaxCalculator(cfg).calculate([{"price": 10, "quantity": 1}])
    assert res["primary_tax"] == Decimal("1.00")
    assert res["breakdown"]["primary_tax_name"] == "City Tax"

    locked = {**cfg, "allow_manual_tax_entry": False}
    res = TaxCalculator(locked).calculate([{"price": 10, "quantity": 1}])
    assert res["primary_tax"] == Decimal("0.80")


def test_rounding_methods():
    items = [{"price": "1.01", "quantity": 1}]
    base = TAX_PRESETS["US"]
    assert TaxCalculator({**base, "rounding_method": "round"}).calculate(items)["primary_tax"] == Decimal("0.08")
    assert TaxCalculator({**base, "rounding_method": "ceil"}).calculate(items)["primary_tax"] == Decimal("0.09")
    assert TaxCalculator({**base, "rounding_method": "floor"}).calculate(items)["primary_tax"] == Decimal("0.08")


def test_presets_and_defaults():
    assert default_configuration()["tax_name"] == "IVA"
    ca = recommended_preset("us", "ca")
    assert ca["default_rate"] == 0.0825
    assert ca["region"] == "California"
    assert recommended_preset("ZZ")["country"] == "Generic"
    assert format_tax_amount(Decimal("3.456")) == "$3.46"
