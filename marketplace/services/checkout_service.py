# marketplace/services/checkout_service.py
"""
Checkout: cart -> priced draft order -> stock reservation -> gateway order.

The gateway call is the slow, failure-prone step, so it runs after the
reservation has been committed and with no database transaction open.
If the gateway is unreachable the reservation and the draft are undone.
"""
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from marketplace.data.models.draft_order import DraftOrderModel
from marketplace.domain.results import action
from marketplace.repos.cart_repo import CartRepo
from marketplace.repos.draft_repo import DraftRepo
from marketplace.repos.user_repo import UserRepo
from marketplace.services.catalog_client import CatalogClient
from marketplace.services.location_client import LocationClient, address_distance_km
from marketplace.services.payment_gateway import PaymentGateway
from marketplace.services.pricing import check_amount_drift, money, ZERO
from marketplace.services.quote import CartQuoter
from marketplace.services.stock_ledger import StockLedger
from marketplace.utils.clock import utcnow
from marketplace.utils.errors import (
    AddressNotFoundError,
    EmptyCartError,
    MarketplaceError,
    NotFoundError,
)
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import CURRENCY, DRAFT_TTL_SECONDS, MIN_GATEWAY_AMOUNT

logger = get_logger(__name__)


class CheckoutService:
    def __init__(
        self,
        db: Session,
        catalog: CatalogClient,
        location: LocationClient,
        gateway: PaymentGateway,
    ):
        self.db = db
        self.carts = CartRepo(db)
        self.drafts = DraftRepo(db)
        self.users = UserRepo(db)
        self.quoter = CartQuoter(db, catalog)
        self.ledger = StockLedger(db)
        self.location = location
        self.gateway = gateway

    @action("checkout.open_payment")
    def open_payment(
        self,
        buyer_id: int,
        address_id: int,
        client_amount: Decimal | None = None,
        coupon_code: str | None = None,
        use_wallet: bool = False,
    ) -> dict:
        now = utcnow()

        buyer = self.users.get_user(buyer_id)
        if not buyer:
            raise NotFoundError("Buyer not found.", buyer_id=buyer_id)

        cart = self.carts.get_active_cart_by_user(buyer_id)
        items = self.carts.get_cart_items(cart.id) if cart else []
        if not items:
            raise EmptyCartError(buyer_id=buyer_id)

        lines = [
            {
                "item_id": i.item_id,
                "variant_id": i.variant_id,
                "quantity": i.quantity,
                "personalization": i.personalization,
                "selected_addons": i.selected_addons or [],
            }
            for i in items
        ]

        address = self.location.fetch_address(address_id)
        if address.get("user_id") not in (None, buyer_id):
            raise AddressNotFoundError(address_id=address_id)

        seller = self.users.get_user(cart.seller_id) if cart.seller_id else None
        distance_km = address_distance_km(
            address,
            seller.latitude if seller else None,
            seller.longitude if seller else None,
        )

        quote = self.quoter.quote(lines, distance_km=distance_km, coupon_code=coupon_code, now=now)
        if use_wallet and buyer.wallet_balance and buyer.wallet_balance > 0:
            # the gateway needs a non-zero amount, the wallet covers the rest
            wallet = min(money(buyer.wallet_balance), max(quote.pricing.total - MIN_GATEWAY_AMOUNT, ZERO))
            quote = self.quoter.quote(
                lines, distance_km=distance_km, coupon_code=coupon_code, wallet_balance=wallet, now=now
            )
        pricing = quote.pricing

        # the amount charged is always ours, the client total is a sanity check
        check_amount_drift(client_amount, pricing.total, buyer_id=buyer_id)

        draft = self.drafts.create_draft(
            DraftOrderModel(
                buyer_id=buyer_id,
                seller_id=quote.seller_id,
                address_id=address_id,
                items=quote.lines,
                pricing=pricing.to_dict(),
                coupon_code=coupon_code.strip().upper() if coupon_code else None,
                distance_km=distance_km,
                created_at=now,
                expires_at=now + timedelta(seconds=DRAFT_TTL_SECONDS),
            )
        )
        self.db.commit()
        logger.info(f"Draft {draft.id} created for buyer {buyer_id}, total {pricing.total}")

        try:
            self.ledger.reserve(buyer_id, quote.lines, draft_id=draft.id, now=now)
        except MarketplaceError:
            self._discard(draft.id)
            raise

        try:
            gateway_order = self.gateway.open_order(
                amount_minor=pricing.amount_minor,
                currency=CURRENCY,
                receipt=f"draft_{draft.id}",
                notes={"draft_id": draft.id, "buyer_id": buyer_id},
            )
        except MarketplaceError:
            logger.error(f"Gateway order could not be opened for draft {draft.id}, releasing stock")
            self.ledger.release(draft.id)
            self._discard(draft.id)
            raise

        self.drafts.attach_gateway_order(draft.id, gateway_order.id)
        self.ledger.bind_gateway_order(draft.id, gateway_order.id)
        logger.info(f"Draft {draft.id} bound to gateway order {gateway_order.id}")

        return {
            "draft_id": draft.id,
            "gateway_order_id": gateway_order.id,
            "amount": gateway_order.amount,
            "currency": gateway_order.currency,
            "pricing": pricing.to_dict(),
            "expires_at": draft.expires_at,
        }

    def _discard(self, draft_id: int) -> None:
        self.drafts.delete_draft(draft_id)
        self.db.commit()
        logger.info(f"Draft {draft_id} discarded")
