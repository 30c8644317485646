from conftest import TODAY, day

from shoppos.domain.models import Cart, CartLine, Invoice, InvoiceItem, Promotion, Voucher
from shoppos.services import eligibility as rules
from shoppos.services.discounts import attribute_promotions, calculate, voucher_snapshot
from shoppos.services.eligibility import CartSnapshot, RedemptionIndex, check_voucher, evaluate


def _promotion(pid="p1", type="percent", value=10.0, **kw):
    kw.setdefault("start_date", day(-5))
    kw.setdefault("end_date", day(5))
    return Promotion(id=pid, name=pid.upper(), type=type, value=value, **kw)


def _voucher(code="SAVE50", type="fixed", value=50_000.0, quantity=10, **kw):
    kw.setdefault("start_date", day(-5))
    kw.setdefault("end_date", day(5))
    return Voucher(id=f"v-{code}", code=code, type=type, value=value, quantity=quantity, **kw)


def _snapshot(subtotal=500_000.0, products=("apple",), customer=None, code=""):
    return CartSnapshot(subtotal=subtotal, product_ids=frozenset(products), customer_id=customer, voucher_code=code)


def test_percent_promotion_and_fixed_voucher_example():
    snapshot = _snapshot(code="save50")
    promotion = _promotion()
    voucher = _voucher()

    result = evaluate(snapshot, [promotion], [voucher], RedemptionIndex(), TODAY)
    breakdown = calculate(snapshot.subtotal, result.promotions, result.voucher)

    assert result.promotion_ids == ["p1"]
    assert result.voucher == voucher
    assert breakdown.promotion_discount == 50_000
    assert breakdown.voucher_discount == 50_000
    assert breakdown.discount == 100_000
    assert breakdown.total == 400_000

    snaps = attribute_promotions(result.promotions, snapshot.subtotal, breakdown.promotion_discount)
    assert [s.discount_amount for s in snaps] == [50_000]
    assert voucher_snapshot(voucher, breakdown).discount_amount == 50_000


def test_total_discount_never_exceeds_subtotal():
    promotions = [_promotion("a", "fixed", 300_000), _promotion("b", "percent", 50)]
    voucher = _voucher(value=1_000_000)

    breakdown = calculate(400_000, promotions, voucher)

    assert breakdown.promotion_discount == 400_000
    assert breakdown.discount == 400_000
    assert breakdown.total == 0
    assert breakdown.voucher_share == 0


def test_promotion_snapshots_are_normalized_to_capped_discount():
    promotions = [_promotion("a", "fixed", 300_000), _promotion("b", "percent", 50)]
    breakdown = calculate(400_000, promotions, None)

    snaps = attribute_promotions(promotions, 400_000, breakdown.promotion_discount)

    assert [s.discount_amount for s in snaps] == [240_000, 160_000]
    assert round(sum(s.discount_amount for s in snaps), 2) == breakdown.promotion_discount


def test_percent_voucher_respects_max_discount():
    voucher = _voucher(code="TEN", type="percent", value=10, max_discount=20_000)
    breakdown = calculate(500_000, [], voucher)
    assert breakdown.voucher_discount == 20_000
    assert breakdown.total == 480_000


def test_buy_get_promotion_applies_without_amount():
    promotion = _promotion("bg", "buy_get", 1)
    result = evaluate(_snapshot(), [promotion], [], RedemptionIndex(), TODAY)
    breakdown = calculate(500_000, result.promotions, None)

    assert result.promotion_ids == ["bg"]
    assert breakdown.discount == 0


def test_empty_cart_gets_nothing():
    snapshot = _snapshot(subtotal=0, products=(), code="SAVE50")
    result = evaluate(snapshot, [_promotion()], [_voucher()], RedemptionIndex(), TODAY)
    assert result.promotions == ()
    assert result.voucher is None


def test_promotion_rules_window_quota_min_purchase_products_and_customers():
    snapshot = _snapshot(subtotal=100_000, products=("apple",), customer="c1")
    candidates = [
        _promotion("ok"),
        _promotion("future", start_date=day(1)),
        _promotion("past", end_date=day(-1)),
        _promotion("used_up", quantity=3, used=3),
        _promotion("unlimited", quantity=0, used=99),
        _promotion("min", min_purchase=200_000),
        _promotion("pears", product_ids=("pear",)),
        _promotion("apples", product_ids=("apple", "pear")),
        _promotion("vip", customer_ids=("c2",)),
        _promotion("mine", customer_ids=("c1",)),
    ]

    result = evaluate(snapshot, candidates, [], RedemptionIndex(), TODAY)

    assert result.promotion_ids == ["ok", "unlimited", "apples", "mine"]


def test_customer_allow_list_without_customer_is_not_eligible():
    promotion = _promotion(customer_ids=("c1",))
    result = evaluate(_snapshot(customer=None), [promotion], [], RedemptionIndex(), TODAY)
    assert result.promotions == ()


def test_last_day_of_window_is_inclusive():
    promotion = _promotion(start_date=day(0), end_date=day(0))
    assert promotion.status_on(TODAY) == "active"
    assert rules.promotion_is_eligible(promotion, _snapshot(), RedemptionIndex(), TODAY)


def test_status_is_derived_not_stored():
    assert _promotion(start_date=day(1)).status_on(TODAY) == "inactive"
    assert _promotion(end_date=day(-1)).status_on(TODAY) == "expired"
    assert _promotion(quantity=2, used=2).status_on(TODAY) == "expired"
    assert _promotion(quantity=0, used=2).status_on(TODAY) == "active"
    assert _voucher(quantity=0).status_on(TODAY) == "expired"


def test_voucher_reasons():
    index = RedemptionIndex()

    assert check_voucher(None, _snapshot(code="NOPE"), index, TODAY) == rules.NOT_FOUND
    assert check_voucher(_voucher(quantity=1, used=1), _snapshot(code="SAVE50"), index, TODAY) == rules.EXHAUSTED
    assert check_voucher(_voucher(end_date=day(-1)), _snapshot(code="SAVE50"), index, TODAY) == rules.OUTSIDE_WINDOW
    assert (
        check_voucher(_voucher(min_purchase=600_000), _snapshot(code="SAVE50"), index, TODAY)
        == rules.BELOW_MIN_PURCHASE
    )
    assert (
        check_voucher(_voucher(product_ids=("pear",)), _snapshot(code="SAVE50"), index, TODAY)
        == rules.PRODUCT_NOT_ELIGIBLE
    )
    assert (
        check_voucher(_voucher(customer_ids=("c9",)), _snapshot(code="SAVE50", customer="c1"), index, TODAY)
        == rules.CUSTOMER_NOT_ELIGIBLE
    )
    assert check_voucher(_voucher(), _snapshot(code=" save50 "), index, TODAY) is None


def test_redemption_index_blocks_second_use_by_same_customer():
    invoice = Invoice(
        id="inv1",
        invoice_code="HD000001",
        date=day(-1),
        time="09:00",
        items=(InvoiceItem("apple", "Apple", 1, 500_000.0),),
        subtotal=500_000,
        discount=100_000,
        total=400_000,
        payment_method="cash",
        customer_id="c1",
        promotion_ids=("p1",),
        voucher_code="save50",
    )
    index = RedemptionIndex.from_invoices([invoice])

    mine = _snapshot(customer="c1", code="SAVE50")
    theirs = _snapshot(customer="c2", code="SAVE50")

    assert evaluate(mine, [_promotion()], [_voucher()], index, TODAY).promotions == ()
    assert check_voucher(_voucher(), mine, index, TODAY) == rules.ALREADY_REDEEMED
    assert evaluate(theirs, [_promotion()], [_voucher()], index, TODAY).promotion_ids == ["p1"]


def test_snapshot_from_cart():
    cart = Cart(id="cart-1", lines=[CartLine("apple", "Apple", 20_000.0, 10, 3)], voucher_code=" x ", customer_id="")
    snapshot = CartSnapshot.of(cart)
    assert snapshot.subtotal == 60_000
    assert snapshot.product_ids == frozenset({"apple"})
    assert snapshot.customer_id is None
    assert snapshot.voucher_code == "x"
