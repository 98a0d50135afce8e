import pytest
from fastapi import HTTPException

from backend.app import feature_flags as ff
from backend.app.routers import feature_flags as flags_router
from backend.app.store import MemoryStore, get_store


def test_catalogue_defaults_and_stats():
    flags = ff.list_flags(MemoryStore(), "m1")
    assert len(flags) == 13
    s = ff.stats(flags)
    assert s["total"] == 13
    assert s["archived"] == 2
    assert s["enabled"] == 11
    assert s["enabled_percentage"] == 85


def test_overrides_are_per_merchant():
    store = MemoryStore()
    flag = ff.set_enabled(store, "m1", "dark_mode", False)
    assert flag["key"] == "DARK_MODE"
    ff.set_enabled(store, "m1", "MINIMAL_UI", False)
    assert ff.is_feature_enabled(store, "m1", "MINIMAL_UI") is False
    assert ff.is_feature_enabled(store, "m2", "MINIMAL_UI") is True
    assert ff.get_flag(store, "m1", "minimal_ui")["last_modified"]


def test_archived_flags_cannot_be_enabled():
    with pytest.raises(ValueError):
        ff.set_enabled(MemoryStore(), "m1", "TWO_FACTOR_AUTH", True)
    assert ff.set_enabled(MemoryStore(), "m1", "NOPE", True) is None


def test_router_filters_by_category_and_reports_stats():
    res = flags_router.list_flags(category="ui", merchant_id="m1")
    assert {f["key"] for f in res["flags"]} == {"DARK_MODE", "MINIMAL_UI"}
    assert res["stats"]["total"] == 13
    with pytest.raises(HTTPException) as exc_info:
        flags_router.list_flags(category="billing", merchant_id="m1")
    assert exc_info.value.status_code == 400


def test_router_update_and_lookup_errors():
    res = flags_router.update_flag("receipt_printing", flags_router.FlagUpdate(enabled=False), merchant_id="m1")
    assert res["effective"] is False
    assert ff.is_feature_enabled(get_store(), "m1", "RECEIPT_PRINTING") is False

    with pytest.raises(HTTPException) as exc_info:
        flags_router.update_flag("DARK_MODE", flags_router.FlagUpdate(enabled=True), merchant_id="m1")
    assert exc_info.value.status_code == 400
    with pytest.raises(HTTPException) as exc_info:
        flags_router.get_flag("NOPE", merchant_id="m1")
    assert exc_info.value.status_code == 404
