from datetime import date
from pathlib import Path

import pytest
from conftest import build_pos, day

from shoppos.domain.errors import NotFoundError, ValidationError
from shoppos.repositories.contracts import PRODUCTS, PROMOTIONS, VOUCHERS


def test_voucher_codes_are_unique_ignoring_case(tmp_path: Path):
    pos = build_pos(tmp_path)
    pos.catalog.add_voucher("Tet2025", "percent", 10, 5, day(-1), day(1), max_discount=20_000)

    with pytest.raises(ValidationError, match="already exists"):
        pos.catalog.add_voucher("TET2025", "fixed", 5_000, 5, day(-1), day(1))
    assert pos.catalog.find_voucher("tet2025").max_discount == 20_000
    assert pos.catalog.find_voucher("other") is None


def test_max_discount_only_for_percent_vouchers(tmp_path: Path):
    pos = build_pos(tmp_path)
    with pytest.raises(ValidationError, match="Max discount"):
        pos.catalog.add_voucher("FLAT", "fixed", 5_000, 5, day(-1), day(1), max_discount=1_000)


def test_rule_windows_must_be_ordered_dates(tmp_path: Path):
    pos = build_pos(tmp_path)
    with pytest.raises(ValidationError, match="End date"):
        pos.catalog.add_promotion("Backwards", "percent", 5, day(2), day(1))
    with pytest.raises(ValidationError, match="YYYY-MM-DD"):
        pos.catalog.add_promotion("Garbled", "percent", 5, "soon", day(1))


def test_absent_allow_lists_are_not_stored(tmp_path: Path):
    pos = build_pos(tmp_path)
    pid = pos.catalog.add_promotion("All", "fixed", 1_000, day(-1), day(1))
    doc = pos.store.get(PROMOTIONS, pid)
    assert "product_ids" not in doc
    assert "customer_ids" not in doc
    assert pos.catalog.list_promotions()[0].product_ids is None


def test_usage_counters_stop_at_quota(tmp_path: Path):
    pos = build_pos(tmp_path)
    promo = pos.catalog.add_promotion("Two", "fixed", 1_000, day(-1), day(1), quantity=2)
    voucher = pos.catalog.add_voucher("ONE", "fixed", 1_000, 1, day(-1), day(1))

    pos.catalog.use_promotion(promo)
    pos.catalog.use_promotion(promo)
    with pytest.raises(ValidationError):
        pos.catalog.use_promotion(promo)
    pos.catalog.use_voucher(voucher)
    with pytest.raises(ValidationError):
        pos.catalog.use_voucher(voucher)

    assert pos.store.get(PROMOTIONS, promo)["used"] == 2
    assert pos.store.get(VOUCHERS, voucher)["used"] == 1


def test_inactive_products_are_hidden(tmp_path: Path):
    pos = build_pos(tmp_path)
    keep = pos.catalog.add_product("Banana", 15_000, 10)
    gone = pos.catalog.add_product("Durian", 90_000, 1)
    pos.store.update(PRODUCTS, gone, {"active": False})

    assert [p.id for p in pos.catalog.list_products()] == [keep]
    with pytest.raises(NotFoundError):
        pos.catalog.get_product(gone)


def test_update_promotion_revalidates_and_clears_allow_lists(tmp_path: Path):
    pos = build_pos(tmp_path)
    pid = pos.catalog.add_promotion("Members", "percent", 10, day(-1), day(1), product_ids=["apple"])

    edited = pos.catalog.update_promotion(pid, value=15, end_date=day(-1), product_ids=None)

    doc = pos.store.get(PROMOTIONS, pid)
    assert doc["value"] == 15.0
    assert "product_ids" not in doc
    assert None not in doc.values()
    assert edited.product_ids is None
    assert edited.status_on(date.fromisoformat(day(0))) == "expired"

    with pytest.raises(ValidationError, match="out of range"):
        pos.catalog.update_promotion(pid, value=150)
    with pytest.raises(ValidationError, match="End date"):
        pos.catalog.update_promotion(pid, start_date=day(5))
    with pytest.raises(ValidationError, match="cannot be cleared"):
        pos.catalog.update_promotion(pid, name=None)
    with pytest.raises(ValidationError, match="Unknown field"):
        pos.catalog.update_promotion(pid, used=0)
    assert pos.store.get(PROMOTIONS, pid)["value"] == 15.0


def test_update_voucher_keeps_codes_unique_ignoring_case(tmp_path: Path):
    pos = build_pos(tmp_path)
    pos.catalog.add_voucher("SPRING", "fixed", 5_000, 5, day(-1), day(1))
    vid = pos.catalog.add_voucher("SUMMER", "percent", 10, 5, day(-1), day(1), max_discount=20_000)

    with pytest.raises(ValidationError, match="already exists"):
        pos.catalog.update_voucher(vid, code="spring")

    renamed = pos.catalog.update_voucher(vid, code="summer", max_discount=None)
    assert renamed.code == "summer"
    assert renamed.max_discount is None
    assert "max_discount" not in pos.store.get(VOUCHERS, vid)
    assert pos.catalog.find_voucher("SUMMER").id == vid

    with pytest.raises(ValidationError, match="Max discount"):
        pos.catalog.update_voucher(vid, type="fixed", value=1_000, max_discount=500)


def test_update_and_delete_products(tmp_path: Path):
    pos = build_pos(tmp_path)
    pid = pos.catalog.add_product("Mango", 40_000, 6)

    assert pos.catalog.update_product(pid, price=45_000, stock=2).price == 45_000
    with pytest.raises(ValidationError, match="Price"):
        pos.catalog.update_product(pid, price=0)

    pos.catalog.delete_product(pid)
    assert pos.store.get(PRODUCTS, pid)["active"] is False
    with pytest.raises(NotFoundError):
        pos.catalog.get_product(pid)
    with pytest.raises(NotFoundError):
        pos.catalog.delete_product(pid)


def test_delete_promotion_and_voucher(tmp_path: Path):
    pos = build_pos(tmp_path)
    pid = pos.catalog.add_promotion("Gone", "fixed", 1_000, day(-1), day(1))
    vid = pos.catalog.add_voucher("GONE", "fixed", 1_000, 1, day(-1), day(1))

    pos.catalog.delete_promotion(pid)
    pos.catalog.delete_voucher(vid)

    assert pos.catalog.list_promotions() == []
    assert pos.catalog.find_voucher("gone") is None
    with pytest.raises(NotFoundError):
        pos.catalog.delete_voucher(vid)
