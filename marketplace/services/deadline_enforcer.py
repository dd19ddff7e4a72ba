# marketplace/services/deadline_enforcer.py
"""
Periodic sweep that forces terminal moves when a person misses a deadline.

Each rule re-reads the order and re-checks its trigger before acting, and a
transition only applies from the exact (status, version) it read. Running
the sweep twice, or two sweeps at once, therefore changes nothing the
second time.
"""
from datetime import datetime

from sqlalchemy.orm import Session

from marketplace.domain.order_status import OrderStatus
from marketplace.repos.draft_repo import DraftRepo
from marketplace.repos.order_repo import OrderRepo
from marketplace.repos.stock_repo import StockRepo
from marketplace.services.order_service import OrderService
from marketplace.services.payment_gateway import PaymentGateway
from marketplace.services.refund_service import RefundService
from marketplace.services.stock_ledger import StockLedger
from marketplace.utils.clock import as_utc, utcnow
from marketplace.utils.errors import ContentionError, InvalidTransitionError
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

ACCEPTANCE_TIMEOUT = "acceptance timeout"
DETAILS_TIMEOUT = "personalization details timeout"


class DeadlineEnforcer:
    def __init__(self, db: Session, gateway: PaymentGateway, notifier):
        self.db = db
        self.orders = OrderRepo(db)
        self.drafts = DraftRepo(db)
        self.stock = StockRepo(db)
        self.ledger = StockLedger(db)
        self.gateway = gateway
        self.refunds = RefundService(db, gateway)
        self.service = OrderService(db, notifier, self.refunds)

    def run(self, now: datetime | None = None) -> dict[str, int]:
        now = now or utcnow()
        logger.info(f"Deadline sweep started at {now.isoformat()}")

        counts = {
            "acceptance_timeout": self.acceptance_timeouts(now),
            "details_timeout": self.details_timeouts(now),
            "preview_auto_approved": self.preview_auto_approvals(now),
            "refunds_retried": self.retry_refunds(),
            "reservations_purged": self.ledger.purge_expired(now),
            "drafts_expired": self.cleanup_drafts(now),
        }

        logger.info(f"Deadline sweep finished: {counts}")
        return counts

    def _skip(self, order_id: int, rule: str, e: Exception) -> None:
        # someone moved the order first; the rule has nothing left to do
        self.db.rollback()
        logger.info(f"{rule}: order {order_id} skipped ({e.__class__.__name__}: {e})")

    #rule 1
    def acceptance_timeouts(self, now: datetime) -> int:
        count = 0
        for order_id in self.orders.due_for_acceptance(now):
            order = self.orders.fetch_fresh(order_id)
            if order.status != OrderStatus.PLACED.value or as_utc(order.accept_deadline) >= now:
                continue
            try:
                self.service.auto_cancel(
                    order,
                    ACCEPTANCE_TIMEOUT,
                    "The seller did not accept the order in time, so it was cancelled automatically. "
                    "Your payment is being refunded.",
                    now=now,
                )
            except (InvalidTransitionError, ContentionError) as e:
                self._skip(order_id, "acceptance_timeout", e)
                continue
            logger.warning(f"Order {order_id} auto-cancelled: {ACCEPTANCE_TIMEOUT}")
            count += 1
        return count

    #rule 2
    def details_timeouts(self, now: datetime) -> int:
        count = 0
        for order_id in self.orders.due_for_details(now):
            order = self.orders.fetch_fresh(order_id)
            if (
                order.status != OrderStatus.CONFIRMED.value
                or order.personalization_input is not None
                or as_utc(order.details_deadline) >= now
            ):
                continue
            try:
                self.service.auto_cancel(
                    order,
                    DETAILS_TIMEOUT,
                    "Personalization details were not received in time, so the order was cancelled "
                    "automatically. Your payment is being refunded.",
                    now=now,
                )
            except (InvalidTransitionError, ContentionError) as e:
                self._skip(order_id, "details_timeout", e)
                continue
            logger.warning(f"Order {order_id} auto-cancelled: {DETAILS_TIMEOUT}")
            count += 1
        return count

    #rule 3
    def preview_auto_approvals(self, now: datetime) -> int:
        count = 0
        for order_id in self.orders.due_for_preview_approval(now):
            order = self.orders.fetch_fresh(order_id)
            if order.status != OrderStatus.PREVIEW_READY.value or as_utc(order.preview_deadline) >= now:
                continue
            try:
                self.service.auto_approve(order, now=now)
            except (InvalidTransitionError, ContentionError) as e:
                self._skip(order_id, "preview_auto_approve", e)
                continue
            logger.info(f"Order {order_id} preview auto-approved")
            count += 1
        return count

    #rule 4
    def retry_refunds(self) -> int:
        count = 0
        for order_id in self.orders.refunds_to_retry():
            if self.refunds.refund_order(order_id, "refund retry"):
                count += 1
        return count

    #housekeeping
    def cleanup_drafts(self, now: datetime) -> int:
        """
        Deletes expired drafts with their reservations. A draft that carries
        a payment id was paid but never became an order; that payment is
        refunded unless an order exists for it after all. The claim is
        committed before the gateway call, and from then on the draft can
        not be turned into an order.
        """
        count = 0
        for draft in self.drafts.list_expired(now):
            draft_id, payment_id = draft.id, draft.gateway_payment_id
            if payment_id and not self.orders.get_by_gateway_order_id(draft.gateway_order_id):
                if not self.drafts.claim_payment(draft_id, payment_id):
                    self.db.rollback()
                    continue
                self.stock.delete_for_draft(draft_id)
                self.db.commit()

                logger.error(f"Draft {draft_id} expired with captured payment {payment_id}, refunding")
                result = self.gateway.refund(payment_id, notes={"draft_id": draft_id, "reason": "order could not be created"})
                if not result.success:
                    # release the claim so the next sweep tries again
                    logger.error(f"Refund for expired draft {draft_id} failed: {result.failure_reason}")
                    self.drafts.release_payment(draft_id)
                    self.db.commit()
                    continue

            self.stock.delete_for_draft(draft_id)
            self.drafts.delete_draft(draft_id)
            self.db.commit()
            count += 1

        if count:
            logger.info(f"Deleted {count} expired drafts")
        return count
