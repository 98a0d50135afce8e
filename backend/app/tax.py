from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any, Iterable, Optional

_CENT = Decimal("0.01")

_ROUNDING = {
    "round": ROUND_HALF_UP,
    "ceil": ROUND_CEILING,
    "floor": ROUND_FLOOR,
}

TAX_PRESETS: dict[str, dict[str, Any]] = {
    "AR": {
        "enabled": True,
        "default_rate": 0.21,
        "tax_type": "IVA",
        "country": "Argentina",
        "include_tax_in_price": True,
        "rounding_method": "round",
        "tax_name": "IVA",
        "show_tax_line": True,
        "allow_manual_tax_entry": True,
    },
    "US": {
        "enabled": True,
        "default_rate": 0.08,
        "tax_type": "SALES_TAX",
        "country": "United States",
        "include_tax_in_price": False,
        "rounding_method": "round",
        "tax_name": "Sales Tax",
        "show_tax_line": True,
        "allow_manual_tax_entry": True,
    },
    "BR": {
        "enabled": True,
        "default_rate": 0.18,
        "secondary_rate": 0.0925,
        "tax_type": "VAT",
        "country": "Brazil",
        "include_tax_in_price": True,
        "rounding_method": "round",
        "tax_name": "ICMS",
        "secondary_tax_name": "PIS/COFINS",
        "show_tax_line": True,
        "allow_manual_tax_entry": True,
    },
    "CL": {
        "enabled": True,
        "default_rate": 0.19,
        "tax_type": "IVA",
        "country": "Chile",
        "include_tax_in_price": True,
        "rounding_method": "round",
        "tax_name": "IVA",
        "show_tax_line": True,
        "allow_manual_tax_entry": True,
    },
    "DEFAULT": {
        "enabled": False,
        "default_rate": 0.10,
        "tax_type": "VAT",
        "country": "Generic",
        "include_tax_in_price": False,
        "rounding_method": "round",
        "tax_name": "Tax",
        "show_tax_line": True,
        "allow_manual_tax_entry": True,
    },
}

US_STATE_RATES = {
    "CA": (0.0825, "California"),
    "NY": (0.08, "New York"),
    "TX": (0.0625, "Texas"),
    "FL": (0.06, "Florida"),
}

DEFAULT_COUNTRY = "AR"


def recommended_preset(country: str, region: Optional[str] = None) -> dict[str, Any]:
    code = (country or "").strip().upper()
    if code == "US" and region:
        state = US_STATE_RATES.get(region.strip().upper())
        if state:
            rate, name = state
            return {**TAX_PRESETS["US"], "default_rate": rate, "region": name}
    return dict(TAX_PRESETS.get(code) or TAX_PRESETS["DEFAULT"])


def default_configuration() -> dict[str, Any]:
    return dict(TAX_PRESETS[DEFAULT_COUNTRY])


def _dec(v) -> Decimal:
    if v is None:
        return Decimal("0")
    return Decimal(str(v))


class TaxCalculator:
    """
    Cart tax calculator.

    - exclusive pricing (US style): tax is added on top of the line totals
    - inclusive pricing (AR/BR/CL style): the pre-tax amount is extracted by
      dividing by (1 + primary + secondary)

    Tax-exempt lines never enter the taxable base but still count towards
    subtotal and total. Amounts are Decimals rounded to cents with the
    configured rounding method.
    """

    def __init__(self, config: dict[str, Any]):
        self.config = dict(config)

    def _round(self, amount: Decimal) -> Decimal:
        method = _ROUNDING.get(self.config.get("rounding_method") or "round", ROUND_HALF_UP)
        return amount.quantize(_CENT, rounding=method)

    def effective_rate(self) -> Decimal:
        manual = self.config.get("manual_tax_rate")
        if self.config.get("allow_manual_tax_entry") and manual is not None:
            return _dec(manual)
        return _dec(self.config.get("default_rate"))

    def effective_name(self) -> str:
        manual = self.config.get("manual_tax_name")
        if self.config.get("allow_manual_tax_entry") and manual:
            return manual
        return self.config.get("tax_name") or "Tax"

    def calculate(self, items: Iterable[dict]) -> dict[str, Any]:
        taxable = Decimal("0")
        exempt = Decimal("0")
        for it in items:
            line = _dec(it.get("price")) * _dec(it.get("quantity"))
            if it.get("tax_exempt"):
                exempt += line
            else:
                taxable += line

        secondary_rate = _dec(self.config.get("secondary_rate"))
        secondary_name = self.config.get("secondary_tax_name")

        if not self.config.get("enabled"):
            subtotal = self._round(taxable + exempt)
            return self._result(subtotal, Decimal("0"), Decimal("0"), subtotal, Decimal("0"), Decimal("0"),
                                self.config.get("tax_name") or "Tax", None)

        rate = self.effective_rate()
        if self.config.get("include_tax_in_price"):
            base = self._round(taxable / (1 + rate + secondary_rate))
            primary = self._round(base * rate)
            secondary = self._round(base * secondary_rate) if secondary_rate else Decimal("0")
            subtotal = base + exempt
            total = taxable + exempt
        else:
            primary = self._round(taxable * rate)
            secondary = self._round(taxable * secondary_rate) if secondary_rate else Decimal("0")
            subtotal = taxable + exempt
            total = subtotal + primary + secondary

        return self._result(self._round(subtotal), primary, secondary, self._round(total), rate, secondary_rate,
                            self.effective_name(), secondary_name)

    def _result(self, subtotal, primary, secondary, total, rate, secondary_rate, name, secondary_name):
        breakdown: dict[str, Any] = {"primary_tax_name": name, "primary_tax_amount": primary}
        if secondary_name:
            breakdown["secondary_tax_name"] = secondary_name
            breakdown["secondary_tax_amount"] = secondary
        return {
            "subtotal": subtotal,
            "primary_tax": primary,
            "secondary_tax": secondary,
            "total_tax": primary + secondary,
            "total": total,
            "tax_rate": rate,
            "secondary_tax_rate": secondary_rate,
            "breakdown": breakdown,
        }


def format_tax_amount(amount, currency_symbol: str = "$") -> str:
    return f"{currency_symbol}{_dec(amount).quantize(_CENT)}"
