# marketplace/services/quote.py
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from marketplace.repos.coupon_repo import CouponRepo
from marketplace.services.catalog_client import CatalogClient, price_line, line_requires_personalization
from marketplace.services.pricing import PricingBreakdown, compute_pricing, coupon_from_row, ZERO
from marketplace.utils.errors import (
    EmptyCartError,
    InvalidCouponError,
    MissingPersonalizationError,
    SellerMismatchError,
)


@dataclass(frozen=True)
class Quote:
    pricing: PricingBreakdown
    lines: list[dict]
    seller_id: int

    @property
    def requires_personalization(self) -> bool:
        return any(line["requires_personalization"] for line in self.lines)


class CartQuoter:
    """Prices cart lines against the catalog's current state."""

    def __init__(self, db: Session, catalog: CatalogClient):
        self.coupons = CouponRepo(db)
        self.catalog = catalog

    def quote(
        self,
        lines: list[dict],
        distance_km: float | None = None,
        coupon_code: str | None = None,
        wallet_balance: Decimal = ZERO,
        now: datetime | None = None,
        coupon_now: datetime | None = None,
    ) -> Quote:
        if not lines:
            raise EmptyCartError()

        items: dict[int, dict | None] = {}
        for line in lines:
            if line["item_id"] not in items:
                items[line["item_id"]] = self.catalog.fetch_item(line["item_id"])

        priced, frozen, sellers = [], [], set()
        for line in lines:
            item = items[line["item_id"]]
            priced_line = price_line(item, line)
            sellers.add(item["seller_id"])

            requires = line_requires_personalization(item, line)
            if item.get("requires_personalization") and not (line.get("personalization") or {}).get("enabled"):
                raise MissingPersonalizationError(
                    "Choose a personalization option for every item that needs one.",
                    item_id=line["item_id"],
                )

            priced.append(priced_line)
            frozen.append(
                {
                    "item_id": line["item_id"],
                    "variant_id": line.get("variant_id"),
                    "quantity": int(line["quantity"]),
                    "personalization": line.get("personalization"),
                    "selected_addons": line.get("selected_addons") or [],
                    "requires_personalization": requires,
                }
            )

        if len(sellers) > 1:
            raise SellerMismatchError(seller_ids=sorted(sellers))

        coupon = None
        if coupon_code:
            row = self.coupons.get_by_code(coupon_code)
            if row is None:
                raise InvalidCouponError(f"Coupon {coupon_code} does not exist.", code=coupon_code)
            coupon = coupon_from_row(row)

        pricing = compute_pricing(
            priced,
            coupon=coupon,
            distance_km=distance_km,
            wallet_balance=wallet_balance,
            now=coupon_now or now,
        )
        return Quote(pricing=pricing, lines=frozen, seller_id=sellers.pop())
