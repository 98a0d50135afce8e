from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..deps import get_merchant_id
from ..store import BaseStore, get_store, merchant_key, now_iso
from ..tax import TAX_PRESETS, TaxCalculator, default_configuration, recommended_preset
from ..validation import NonEmpty, RoundingMethod, TaxType

router = APIRouter(prefix="/tax-settings", tags=["tax"])


class TaxConfigurationIn(BaseModel):
    enabled: bool
    default_rate: float = Field(ge=0, le=1)
    secondary_rate: Optional[float] = Field(default=None, ge=0, le=1)
    tax_type: TaxType
    country: NonEmpty
    region: Optional[str] = None
    include_tax_in_price: bool
    rounding_method: RoundingMethod = "round"
    tax_name: NonEmpty
    secondary_tax_name: Optional[str] = None
    show_tax_line: bool = True
    allow_manual_tax_entry: bool = False
    manual_tax_rate: Optional[float] = Field(default=None, ge=0, le=1)
    manual_tax_name: Optional[str] = None


class PresetIn(BaseModel):
    country: NonEmpty
    region: Optional[str] = None


class CalcItem(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    price: Decimal = Field(ge=0)
    quantity: int = Field(gt=0)
    category: Optional[str] = None
    tax_exempt: bool = False


class CalculateIn(BaseModel):
    items: List[CalcItem]


def tax_settings_key(merchant_id: str) -> str:
    return merchant_key("tax_settings", merchant_id)


def load_tax_settings(store: BaseStore, merchant_id: str) -> dict:
    return store.load_doc(tax_settings_key(merchant_id)) or default_configuration()


@router.get("")
def get_tax_settings(merchant_id: str = Depends(get_merchant_id)):
    return {"tax_settings": load_tax_settings(get_store(), merchant_id), "presets": sorted(TAX_PRESETS)}


@router.put("")
def save_tax_settings(data: TaxConfigurationIn, merchant_id: str = Depends(get_merchant_id)):
    doc = {**data.model_dump(), "updated_at": now_iso()}
    get_store().set_item(tax_settings_key(merchant_id), doc)
    return {"tax_settings": doc}


@router.post("/preset")
def apply_preset(data: PresetIn, merchant_id: str = Depends(get_merchant_id)):
    code = data.country.upper()
    if code not in TAX_PRESETS:
        raise HTTPException(status_code=400, detail=f"unknown tax preset: {data.country}")
    doc = {**recommended_preset(code, data.region), "updated_at": now_iso()}
    get_store().set_item(tax_settings_key(merchant_id), doc)
    return {"tax_settings": doc}


@router.post("/calculate")
def calculate_tax(data: CalculateIn, merchant_id: str = Depends(get_merchant_id)):
    config = load_tax_settings(get_store(), merchant_id)
    items = [it.model_dump() for it in data.items]
    return {"calculation": TaxCalculator(config).calculate(items)}
