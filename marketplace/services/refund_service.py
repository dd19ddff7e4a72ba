# marketplace/services/refund_service.py
from sqlalchemy.orm import Session

from marketplace.domain.order_status import PaymentStatus
from marketplace.repos.order_repo import OrderRepo
from marketplace.repos.user_repo import UserRepo
from marketplace.services.payment_gateway import PaymentGateway, RefundResult
from marketplace.services.pricing import to_minor_units
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


class RefundService:
    """
    Refunds the gateway payment of an order.

    The payment is claimed first (paid/refund_failed -> refund_pending) with
    a conditional update and committed, then the gateway is called with no
    transaction open. A second caller finds nothing to claim, so a payment is
    never refunded twice. The wallet part goes back to the wallet on the
    first claim only.
    """

    def __init__(self, db: Session, gateway: PaymentGateway):
        self.db = db
        self.orders = OrderRepo(db)
        self.users = UserRepo(db)
        self.gateway = gateway

    def refund_order(self, order_id: int, reason: str) -> bool | None:
        """True refunded, False gateway refused (retried by the sweep), None nothing to refund."""
        if self.orders.claim_refund(order_id, (PaymentStatus.PAID.value,)):
            order = self.orders.fetch_fresh(order_id)
            if order.wallet_deduction and order.wallet_deduction > 0:
                self.users.credit_wallet(order.buyer_id, order.wallet_deduction)
                logger.info(f"Returned {order.wallet_deduction} to wallet of buyer {order.buyer_id} for order {order_id}")
        elif not self.orders.claim_refund(order_id, (PaymentStatus.REFUND_FAILED.value,)):
            self.db.rollback()
            logger.info(f"Order {order_id} has no refundable payment, skipping")
            return None
        self.db.commit()

        order = self.orders.fetch_fresh(order_id)
        try:
            result = self.gateway.refund(
                order.gateway_payment_id,
                amount_minor=to_minor_units(order.total),
                notes={"order_id": order.id, "order_number": order.order_number, "reason": reason[:64]},
            )
        except Exception as e:
            # the claim is committed, so the payment must leave refund_pending
            logger.exception(f"Refund call raised for order {order_id}")
            result = RefundResult(success=False, failure_reason=str(e))

        if result.success:
            self.orders.set_payment_status(
                order_id,
                PaymentStatus.REFUNDED.value,
                refunded_amount=order.total,
            )
            self.db.commit()
            logger.info(f"Refunded {order.total} for order {order_id} ({reason}), refund {result.gateway_refund_id}")
            return True

        self.orders.set_payment_status(order_id, PaymentStatus.REFUND_FAILED.value)
        self.db.commit()
        logger.error(f"Refund failed for order {order_id} payment {order.gateway_payment_id}: {result.failure_reason}")
        return False
