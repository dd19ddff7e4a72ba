# marketplace/services/order_creation.py
"""
Verified payment -> durable order.

Two paths lead here: the buyer's client calling verify, and the gateway's
webhook. Whichever commits first creates the order. The unique index on
orders.gateway_order_id decides the race; the loser rolls back and reads
the winner's row from the database, so both callers get the same order.
"""
from datetime import timedelta
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.data.models.draft_order import DraftOrderModel
from marketplace.data.models.order import OrderModel
from marketplace.data.models.order_item import OrderItemModel
from marketplace.data.models.order_status_history import OrderStatusHistoryModel
from marketplace.domain.order_status import OrderStatus, PaymentStatus, ItemStatus
from marketplace.domain.results import action
from marketplace.repos.cart_repo import CartRepo
from marketplace.repos.draft_repo import DraftRepo
from marketplace.repos.order_repo import OrderRepo
from marketplace.repos.user_repo import UserRepo
from marketplace.services.catalog_client import CatalogClient
from marketplace.services.notification_service import ChangeNotifier
from marketplace.services.payment_gateway import PaymentGateway
from marketplace.services.pricing import PricingBreakdown, check_amount_drift
from marketplace.services.quote import CartQuoter
from marketplace.services.stock_ledger import StockLedger
from marketplace.utils.clock import as_utc, utcnow
from marketplace.utils.errors import (
    ConcurrencyConflictError,
    DraftConsumedError,
    InsufficientWalletBalanceError,
    InvalidSignatureError,
    ValidationError,
)
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import (
    ACCEPT_SLA_SECONDS,
    DEFAULT_MAX_CHANGE_REQUESTS,
    DRAFT_PRICE_STALE_SECONDS,
)

logger = get_logger(__name__)

CAPTURED_STATUSES = frozenset({"captured", "paid"})


def order_number(now) -> str:
    return f"ORD-{now:%Y%m%d}-{uuid4().hex[:8].upper()}"


def order_summary(order: OrderModel, created: bool) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "created": created,
    }


class OrderCreationService:
    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        catalog: CatalogClient,
        notifier: ChangeNotifier,
    ):
        self.db = db
        self.orders = OrderRepo(db)
        self.drafts = DraftRepo(db)
        self.users = UserRepo(db)
        self.carts = CartRepo(db)
        self.ledger = StockLedger(db)
        self.quoter = CartQuoter(db, catalog)
        self.gateway = gateway
        self.notifier = notifier

    #entry points
    @action("payment.verify")
    def verify_payment(
        self,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
        draft_id: int | None = None,
    ) -> dict:
        if not self.gateway.verify_signature(gateway_order_id, payment_id, signature):
            logger.error(f"Invalid payment signature for gateway order {gateway_order_id} payment {payment_id}")
            raise InvalidSignatureError(gateway_order_id=gateway_order_id)

        existing = self.orders.get_by_gateway_order_id(gateway_order_id)
        if existing:
            logger.info(f"Order {existing.id} already exists for gateway order {gateway_order_id}")
            return order_summary(existing, created=False)

        draft = self.drafts.get_draft(draft_id) if draft_id else self.drafts.get_by_gateway_order(gateway_order_id)
        if draft is not None and draft.gateway_order_id != gateway_order_id:
            raise ValidationError("This payment does not belong to that checkout.", draft_id=draft_id)
        if draft is None:
            return self._consumed(gateway_order_id, draft_id)

        return self.create_from_draft(draft, payment_id, actor="buyer")

    @action("payment.webhook")
    def handle_webhook(self, gateway_order_id: str, payment_id: str, status: str) -> dict:
        """The caller has already checked the webhook signature over the raw body."""
        if status not in CAPTURED_STATUSES:
            logger.info(f"Ignoring webhook for gateway order {gateway_order_id} with status {status}")
            return {"ignored": True, "status": status}

        existing = self.orders.get_by_gateway_order_id(gateway_order_id)
        if existing:
            return order_summary(existing, created=False)

        draft = self.drafts.get_by_gateway_order(gateway_order_id)
        if draft is None:
            # the verify path may have consumed the draft after our lookup
            existing = self.orders.get_by_gateway_order_id(gateway_order_id)
            if existing:
                return order_summary(existing, created=False)
            return self._refund_orphan(gateway_order_id, payment_id)

        return self.create_from_draft(draft, payment_id, actor="gateway")

    def _consumed(self, gateway_order_id: str, draft_id: int | None) -> dict:
        existing = self.orders.get_by_gateway_order_id(gateway_order_id)
        if existing:
            return order_summary(existing, created=False)
        raise DraftConsumedError(gateway_order_id=gateway_order_id, draft_id=draft_id)

    def _refund_orphan(self, gateway_order_id: str, payment_id: str) -> dict:
        logger.error(f"Captured payment {payment_id} for gateway order {gateway_order_id} has no draft and no order, refunding")
        result = self.gateway.refund(payment_id, notes={"gateway_order_id": gateway_order_id, "reason": "orphaned"})
        if not result.success:
            logger.error(f"Orphan refund failed for payment {payment_id}: {result.failure_reason}")
        return {"orphaned": True, "refunded": result.success}

    #transaction
    def create_from_draft(self, draft: DraftOrderModel, payment_id: str, actor: str = "buyer") -> dict:
        """
        One transaction: insert order, promote stock, debit wallet, insert
        lines and the first history entry, drop the draft, empty the cart.
        Nothing is committed on failure and the draft stays usable.
        """
        now = utcnow()
        draft_id = draft.id
        gateway_order_id = draft.gateway_order_id
        charged = PricingBreakdown.from_dict(draft.pricing)

        try:
            lines = self._confirm_lines(draft, charged, now)

            order = OrderModel(
                order_number=order_number(now),
                buyer_id=draft.buyer_id,
                seller_id=draft.seller_id,
                address_id=draft.address_id,
                status=OrderStatus.PLACED.value,
                version=1,
                payment_status=PaymentStatus.PAID.value,
                subtotal=charged.subtotal,
                personalization_charges=charged.personalization_charges,
                delivery_fee=charged.delivery_fee,
                platform_fee=charged.platform_fee,
                gst=charged.gst,
                discount=charged.discount,
                wallet_deduction=charged.wallet_deduction,
                total=charged.total,
                coupon_code=draft.coupon_code,
                requires_personalization=any(line["requires_personalization"] for line in lines),
                change_request_count=0,
                max_change_requests=DEFAULT_MAX_CHANGE_REQUESTS,
                accept_deadline=now + timedelta(seconds=ACCEPT_SLA_SECONDS),
                gateway_order_id=gateway_order_id,
                gateway_payment_id=payment_id,
                created_at=now,
                updated_at=now,
            )
            # flush first so a concurrent creator hits the unique index before anything else
            self.orders.create_order(order)

            # the draft is consumed exactly once, a sweep refunding its payment wins over a late verify
            if self.drafts.consume(draft.id) != 1:
                raise DraftConsumedError(gateway_order_id=gateway_order_id, draft_id=draft_id)

            self.ledger.promote(draft.buyer_id, gateway_order_id, lines, now)

            if charged.wallet_deduction > 0:
                if self.users.debit_wallet(draft.buyer_id, charged.wallet_deduction) == 0:
                    raise InsufficientWalletBalanceError(buyer_id=draft.buyer_id, draft_id=draft.id)

            for line, priced in zip(lines, charged.lines):
                self.orders.add_item(
                    OrderItemModel(
                        order_id=order.id,
                        item_id=line["item_id"],
                        variant_id=line.get("variant_id"),
                        quantity=line["quantity"],
                        unit_price=priced.unit_price + priced.addons_price + priced.personalization_price,
                        total_price=priced.line_total,
                        requires_personalization=line["requires_personalization"],
                        personalization=line.get("personalization"),
                        selected_addons=line.get("selected_addons") or [],
                        status=(
                            ItemStatus.AWAITING_DETAILS.value
                            if line["requires_personalization"]
                            else ItemStatus.PLACED.value
                        ),
                    )
                )

            self.orders.add_history(
                OrderStatusHistoryModel(
                    order_id=order.id,
                    event_type="ORDER_PLACED",
                    title="Order placed",
                    description="Payment received. Waiting for the seller to accept the order.",
                    from_status=None,
                    to_status=OrderStatus.PLACED.value,
                    actor=actor,
                    details={"gateway_order_id": gateway_order_id, "payment_id": payment_id, "draft_id": draft.id},
                    created_at=now,
                )
            )

            self.carts.checkout_cart(draft.buyer_id, now)
            self.db.commit()

        except IntegrityError:
            self.db.rollback()
            winner = self.orders.get_by_gateway_order_id(gateway_order_id)
            if winner is None:
                logger.error(f"Integrity error creating order for gateway order {gateway_order_id} with no winner row")
                raise ConcurrencyConflictError(gateway_order_id=gateway_order_id)
            logger.info(f"Lost creation race for gateway order {gateway_order_id}, returning order {winner.id}")
            return order_summary(winner, created=False)

        except DraftConsumedError:
            self.db.rollback()
            logger.error(f"Draft {draft_id} for gateway order {gateway_order_id} was consumed before payment {payment_id} arrived")
            raise

        except Exception:
            self.db.rollback()
            logger.exception(f"Order creation failed for draft {draft_id} gateway order {gateway_order_id}, draft kept")
            self._remember_payment(draft_id, payment_id)
            raise

        logger.info(f"Order {order.id} ({order.order_number}) created from draft {draft_id} by {actor}")
        self.notifier.order_changed(order)
        return order_summary(order, created=True)

    def _confirm_lines(self, draft: DraftOrderModel, charged: PricingBreakdown, now) -> list[dict]:
        """
        Re-prices a stale draft against the catalog. The charged amount is
        final; extreme drift rejects the order, smaller drift is logged.
        """
        lines = list(draft.items)
        age = (now - as_utc(draft.created_at)).total_seconds()
        if age <= DRAFT_PRICE_STALE_SECONDS:
            return lines

        logger.info(f"Draft {draft.id} is {int(age)}s old, re-pricing before order creation")
        quote = self.quoter.quote(
            lines,
            distance_km=draft.distance_km,
            coupon_code=draft.coupon_code,
            wallet_balance=charged.wallet_deduction,
            now=now,
            coupon_now=as_utc(draft.created_at),
        )
        check_amount_drift(charged.total, quote.pricing.total, draft_id=draft.id)
        return quote.lines

    def _remember_payment(self, draft_id: int, payment_id: str) -> None:
        # an expired draft carrying a payment id gets refunded by the sweep
        try:
            self.drafts.record_payment(draft_id, payment_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Could not record payment {payment_id} on draft {draft_id}")
