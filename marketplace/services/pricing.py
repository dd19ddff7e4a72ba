# marketplace/services/pricing.py
"""
Pricing engine: cart lines + coupon + delivery distance -> itemized total.

Pure functions, no I/O. Item prices are GST inclusive, so the gst figure is
the tax already contained in the items total, not an extra charge.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from marketplace.utils.clock import as_utc
from marketplace.utils.errors import InvalidCouponError, PriceMismatchError
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import (
    GST_RATE,
    PLATFORM_FEE,
    DELIVERY_FEE_3KM,
    DELIVERY_FEE_5KM,
    DELIVERY_FEE_ABOVE_5KM,
    FREE_DELIVERY_THRESHOLD,
    PRICE_DRIFT_TOLERANCE_MINOR,
    PRICE_DRIFT_REJECT_RATIO,
)

logger = get_logger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    return int((money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PricedLine:
    item_id: int
    variant_id: int | None
    quantity: int
    unit_price: Decimal
    addons_price: Decimal = ZERO
    personalization_price: Decimal = ZERO

    @property
    def line_subtotal(self) -> Decimal:
        return money((self.unit_price + self.addons_price) * self.quantity)

    @property
    def line_personalization(self) -> Decimal:
        return money(self.personalization_price * self.quantity)

    @property
    def line_total(self) -> Decimal:
        return self.line_subtotal + self.line_personalization


@dataclass(frozen=True)
class Coupon:
    code: str
    kind: str  # percent | flat
    value: Decimal
    min_order_value: Decimal = ZERO
    max_discount: Decimal | None = None
    is_active: bool = True
    expires_at: datetime | None = None


@dataclass(frozen=True)
class PricingBreakdown:
    subtotal: Decimal
    personalization_charges: Decimal
    delivery_fee: Decimal
    platform_fee: Decimal
    gst: Decimal
    discount: Decimal
    wallet_deduction: Decimal
    total: Decimal
    lines: tuple = field(default_factory=tuple)

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.total)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["lines"] = [
            {
                "item_id": line.item_id,
                "variant_id": line.variant_id,
                "quantity": line.quantity,
                "unit_price": str(line.unit_price),
                "addons_price": str(line.addons_price),
                "personalization_price": str(line.personalization_price),
            }
            for line in self.lines
        ]
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = str(value)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PricingBreakdown":
        lines = tuple(
            PricedLine(
                item_id=line["item_id"],
                variant_id=line.get("variant_id"),
                quantity=line["quantity"],
                unit_price=money(line["unit_price"]),
                addons_price=money(line.get("addons_price", "0")),
                personalization_price=money(line.get("personalization_price", "0")),
            )
            for line in data.get("lines", [])
        )
        return cls(
            subtotal=money(data["subtotal"]),
            personalization_charges=money(data["personalization_charges"]),
            delivery_fee=money(data["delivery_fee"]),
            platform_fee=money(data["platform_fee"]),
            gst=money(data["gst"]),
            discount=money(data["discount"]),
            wallet_deduction=money(data["wallet_deduction"]),
            total=money(data["total"]),
            lines=lines,
        )


def delivery_fee_for_distance(distance_km: float | None) -> Decimal:
    if distance_km is None or distance_km <= 3:
        return DELIVERY_FEE_3KM
    if distance_km <= 5:
        return DELIVERY_FEE_5KM
    return DELIVERY_FEE_ABOVE_5KM


def coupon_discount(coupon: Coupon, items_total: Decimal, now: datetime | None = None) -> Decimal:
    if not coupon.is_active:
        raise InvalidCouponError(f"Coupon {coupon.code} is no longer active.", code=coupon.code)
    if coupon.expires_at is not None and now is not None and as_utc(coupon.expires_at) <= as_utc(now):
        raise InvalidCouponError(f"Coupon {coupon.code} has expired.", code=coupon.code)
    if items_total < coupon.min_order_value:
        raise InvalidCouponError(
            f"Coupon {coupon.code} needs a minimum order of {money(coupon.min_order_value)}.",
            code=coupon.code,
        )

    if coupon.kind == "percent":
        discount = money(items_total * coupon.value / Decimal("100"))
        if coupon.max_discount is not None:
            discount = min(discount, money(coupon.max_discount))
    elif coupon.kind == "flat":
        discount = money(coupon.value)
    else:
        raise InvalidCouponError(f"Coupon {coupon.code} has an unknown type.", code=coupon.code)

    return min(discount, items_total)


def compute_pricing(
    lines: Iterable[PricedLine],
    coupon: Coupon | None = None,
    distance_km: float | None = None,
    wallet_balance: Decimal = ZERO,
    now: datetime | None = None,
) -> PricingBreakdown:
    lines = tuple(lines)

    subtotal = sum((line.line_subtotal for line in lines), ZERO)
    personalization = sum((line.line_personalization for line in lines), ZERO)
    items_total = subtotal + personalization

    delivery = ZERO if items_total >= FREE_DELIVERY_THRESHOLD else money(delivery_fee_for_distance(distance_km))
    platform = money(PLATFORM_FEE) if lines else ZERO
    gst = money(items_total * GST_RATE / (Decimal("1") + GST_RATE))
    discount = coupon_discount(coupon, items_total, now) if coupon else ZERO

    gross = items_total + delivery + platform - discount
    wallet = min(money(wallet_balance), gross) if wallet_balance > 0 else ZERO

    return PricingBreakdown(
        subtotal=money(subtotal),
        personalization_charges=money(personalization),
        delivery_fee=delivery,
        platform_fee=platform,
        gst=gst,
        discount=discount,
        wallet_deduction=wallet,
        total=money(gross - wallet),
        lines=lines,
    )


def check_amount_drift(expected: Decimal | None, server_total: Decimal, **context) -> int:
    """
    Compares an expected amount (client total, or the amount already charged)
    with the server total. Small drift is logged and the server total wins;
    drift above half of the expected amount is rejected.
    Returns the drift in minor units.
    """
    if expected is None:
        return 0

    drift = abs(to_minor_units(expected) - to_minor_units(server_total))
    if drift > to_minor_units(money(expected) * PRICE_DRIFT_REJECT_RATIO):
        raise PriceMismatchError(expected=str(money(expected)), server_total=str(money(server_total)), **context)
    if drift > PRICE_DRIFT_TOLERANCE_MINOR:
        logger.warning(
            f"Price drift of {drift} minor units: expected {money(expected)}, server {money(server_total)} {context}"
        )
    return drift


def coupon_from_row(row) -> Coupon:
    return Coupon(
        code=row.code,
        kind=row.kind,
        value=money(row.value),
        min_order_value=money(row.min_order_value or 0),
        max_discount=money(row.max_discount) if row.max_discount is not None else None,
        is_active=bool(row.is_active),
        expires_at=row.expires_at,
    )
