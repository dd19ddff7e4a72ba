from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace.services.pricing import (
    Coupon,
    PricedLine,
    check_amount_drift,
    compute_pricing,
    delivery_fee_for_distance,
    money,
    to_minor_units,
)
from marketplace.utils.clock import utcnow
from marketplace.utils.errors import InvalidCouponError, PriceMismatchError


def mug(quantity=1, addons="0"):
    return PricedLine(item_id=1, variant_id=None, quantity=quantity, unit_price=money(250), addons_price=money(addons))


def frame(quantity=1):
    return PricedLine(
        item_id=2,
        variant_id=1,
        quantity=quantity,
        unit_price=money(450),
        personalization_price=money(99),
    )


class TestComputePricing:
    def test_small_order_pays_delivery_and_platform_fee(self):
        pricing = compute_pricing([mug()], distance_km=1.1)

        assert pricing.subtotal == Decimal("250.00")
        assert pricing.delivery_fee == Decimal("40.00")
        assert pricing.platform_fee == Decimal("10.00")
        assert pricing.total == Decimal("300.00")
        # prices are GST inclusive, gst is the tax contained in the items
        assert pricing.gst == Decimal("38.14")
        assert pricing.amount_minor == 30000

    def test_delivery_is_free_above_threshold(self):
        pricing = compute_pricing([mug(quantity=2, addons="30")], distance_km=7)

        assert pricing.subtotal == Decimal("560.00")
        assert pricing.delivery_fee == Decimal("0.00")
        assert pricing.total == Decimal("570.00")

    def test_personalization_is_itemized(self):
        pricing = compute_pricing([frame()])

        assert pricing.subtotal == Decimal("450.00")
        assert pricing.personalization_charges == Decimal("99.00")
        assert pricing.delivery_fee == Decimal("0.00")
        assert pricing.total == Decimal("559.00")

    def test_percent_coupon_is_capped(self):
        coupon = Coupon(code="BIG", kind="percent", value=Decimal("50"), max_discount=Decimal("100"))
        pricing = compute_pricing([mug(quantity=2, addons="30")], coupon=coupon)

        assert pricing.discount == Decimal("100.00")
        assert pricing.total == Decimal("470.00")

    def test_flat_coupon(self):
        coupon = Coupon(code="FLAT50", kind="flat", value=Decimal("50"))
        pricing = compute_pricing([mug()], coupon=coupon, distance_km=1)

        assert pricing.discount == Decimal("50.00")
        assert pricing.total == Decimal("250.00")

    def test_coupon_below_minimum_order_is_rejected(self):
        coupon = Coupon(code="WELCOME10", kind="percent", value=Decimal("10"), min_order_value=Decimal("300"))

        with pytest.raises(InvalidCouponError):
            compute_pricing([mug()], coupon=coupon)

    def test_expired_coupon_is_rejected(self):
        now = utcnow()
        coupon = Coupon(code="OLD", kind="flat", value=Decimal("5"), expires_at=now - timedelta(minutes=1))

        with pytest.raises(InvalidCouponError):
            compute_pricing([mug()], coupon=coupon, now=now)

    def test_inactive_coupon_is_rejected(self):
        coupon = Coupon(code="OFF", kind="flat", value=Decimal("5"), is_active=False)

        with pytest.raises(InvalidCouponError):
            compute_pricing([mug()], coupon=coupon)

    def test_wallet_never_exceeds_the_gross_amount(self):
        pricing = compute_pricing([mug()], distance_km=1, wallet_balance=Decimal("1000"))

        assert pricing.wallet_deduction == Decimal("300.00")
        assert pricing.total == Decimal("0.00")


@pytest.mark.parametrize(
    "distance, fee",
    [(None, "40"), (0.5, "40"), (3, "40"), (3.01, "50"), (5, "50"), (5.5, "60")],
)
def test_delivery_fee_bands(distance, fee):
    assert delivery_fee_for_distance(distance) == Decimal(fee)


def test_minor_units_round_half_up():
    assert to_minor_units(Decimal("12.345")) == 1235
    assert to_minor_units(Decimal("0.10")) == 10


class TestAmountDrift:
    def test_no_expected_amount_is_no_drift(self):
        assert check_amount_drift(None, Decimal("300")) == 0

    def test_small_drift_is_tolerated(self):
        assert check_amount_drift(Decimal("300.00"), Decimal("300.04")) == 4

    def test_moderate_drift_is_logged_and_server_wins(self):
        assert check_amount_drift(Decimal("300.00"), Decimal("310.00")) == 1000

    def test_extreme_drift_is_rejected(self):
        with pytest.raises(PriceMismatchError) as exc:
            check_amount_drift(Decimal("100.00"), Decimal("200.00"), draft_id=7)

        assert exc.value.context["draft_id"] == 7
