from pathlib import Path

import pytest
from conftest import build_pos, day

from shoppos.domain.errors import (
    CartCapacityWarning,
    InsufficientStockError,
    ValidationError,
    VoucherRejectedError,
)
from shoppos.repositories.contracts import PRODUCTS


def _setup(tmp_path: Path):
    pos = build_pos(tmp_path)
    apple = pos.catalog.add_product("Apple", 20_000, 5, unit="kg")
    pear = pos.catalog.add_product("Pear", 30_000, 2, unit="kg")
    return pos, apple, pear


def test_starts_with_one_cart_and_refuses_a_sixth(tmp_path: Path):
    pos, _, _ = _setup(tmp_path)
    assert len(pos.carts.carts) == 1

    for _ in range(4):
        pos.carts.create_cart()
    ids_before = [c.id for c in pos.carts.carts]
    current_before = pos.carts.current.id

    with pytest.raises(CartCapacityWarning):
        pos.carts.create_cart()

    assert [c.id for c in pos.carts.carts] == ids_before
    assert pos.carts.current.id == current_before
    assert len(set(ids_before)) == 5


def test_last_cart_cannot_be_deleted(tmp_path: Path):
    pos, _, _ = _setup(tmp_path)
    only = pos.carts.current.id

    with pytest.raises(ValidationError, match="At least one cart"):
        pos.carts.delete_cart(only)
    assert [c.id for c in pos.carts.carts] == [only]


def test_deleting_current_cart_switches_to_first_remaining(tmp_path: Path):
    pos, _, _ = _setup(tmp_path)
    first = pos.carts.current.id
    second = pos.carts.create_cart().id
    assert pos.carts.current.id == second

    pos.carts.delete_cart(second)

    assert pos.carts.current.id == first


def test_add_item_merges_lines_and_blocks_overselling(tmp_path: Path):
    pos, apple, _ = _setup(tmp_path)

    pos.carts.add_item(apple, 2)
    pos.carts.add_item(apple, 2)
    cart = pos.carts.current
    assert len(cart.lines) == 1
    assert cart.lines[0].quantity == 4
    assert cart.subtotal == 80_000

    with pytest.raises(InsufficientStockError):
        pos.carts.add_item(apple, 2)
    assert pos.carts.current.lines[0].quantity == 4


def test_out_of_stock_product_is_refused(tmp_path: Path):
    pos, apple, _ = _setup(tmp_path)
    pos.store.update(PRODUCTS, apple, {"stock": 0})

    with pytest.raises(InsufficientStockError, match="out of stock"):
        pos.carts.add_item(apple)
    assert pos.carts.current.lines == []


def test_set_quantity_clamps_to_live_stock_and_zero_removes(tmp_path: Path):
    pos, apple, pear = _setup(tmp_path)
    pos.carts.add_item(apple, 1)
    pos.carts.add_item(pear, 1)

    line = pos.carts.set_quantity(apple, 50)
    assert line.quantity == 5

    pos.carts.set_quantity(pear, 0)
    assert [l.product_id for l in pos.carts.current.lines] == [apple]


def test_change_quantity_respects_stock_and_removes_at_zero(tmp_path: Path):
    pos, apple, pear = _setup(tmp_path)
    pos.carts.add_item(pear, 2)

    line = pos.carts.change_quantity(pear, +1)
    assert line.quantity == 2

    pos.carts.change_quantity(pear, -2)
    assert pos.carts.current.lines == []


def test_change_quantity_caps_an_increase_at_live_stock(tmp_path: Path):
    pos, apple, _ = _setup(tmp_path)
    pos.carts.add_item(apple, 2)

    line = pos.carts.change_quantity(apple, +10)

    assert line.quantity == 5
    assert pos.carts.current.lines[0].quantity == 5
    assert pos.carts.current.subtotal == 100_000


def test_every_change_reprices_the_cart(tmp_path: Path):
    pos, apple, _ = _setup(tmp_path)
    pos.catalog.add_promotion("Ten off", "percent", 10, day(-1), day(1))

    pos.carts.add_item(apple, 5)
    assert pos.carts.current.promotion_discount == 10_000
    assert pos.carts.current.discount == 10_000

    pos.carts.remove_item(apple)
    cart = pos.carts.current
    assert cart.discount == 0
    assert cart.applied_promotion_ids == []


def test_rejected_voucher_clears_code(tmp_path: Path):
    pos, apple, _ = _setup(tmp_path)
    pos.catalog.add_voucher("BIG", "fixed", 5_000, 5, day(-1), day(1), min_purchase=1_000_000)
    pos.carts.add_item(apple, 1)
    pos.carts.current.voucher_code = "BIG"

    with pytest.raises(VoucherRejectedError) as exc_info:
        pos.carts.apply_voucher("big")

    assert exc_info.value.reason == "below_min_purchase"
    assert pos.carts.current.voucher_code == ""
    assert pos.carts.current.voucher_discount == 0


def test_accepted_voucher_is_priced_in(tmp_path: Path):
    pos, apple, _ = _setup(tmp_path)
    pos.catalog.add_voucher("Save5", "fixed", 5_000, 5, day(-1), day(1))
    pos.carts.add_item(apple, 2)

    voucher = pos.carts.apply_voucher("SAVE5")

    assert voucher.code == "Save5"
    assert pos.carts.current.voucher_discount == 5_000
    assert pos.carts.current.total == 35_000


def test_carts_survive_a_restart(tmp_path: Path):
    pos, apple, _ = _setup(tmp_path)
    pos.carts.add_item(apple, 3)
    second = pos.carts.create_cart()
    pos.carts.select_customer("c1", "Lan")

    reopened = build_pos(tmp_path, store=pos.store)

    assert [c.id for c in reopened.carts.carts] == [c.id for c in pos.carts.carts]
    assert reopened.carts.current.id == second.id
    assert reopened.carts.current.customer_name == "Lan"
    first = reopened.carts.carts[0]
    assert first.lines[0].quantity == 3


def test_prune_drops_lines_for_removed_products(tmp_path: Path):
    pos, apple, pear = _setup(tmp_path)
    pos.carts.add_item(apple)
    pos.carts.add_item(pear)

    removed = pos.carts.prune_missing_products([apple])

    assert removed == 1
    assert [l.product_id for l in pos.carts.current.lines] == [apple]
