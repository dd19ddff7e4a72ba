# marketplace/services/order_service.py
"""
Order lifecycle after creation.

Every move goes through `transition`: the transition table picks the
target, a conditional UPDATE on (status, version) applies it, line
statuses follow, and exactly one history entry is appended in the same
transaction. Observers are told after commit.
"""
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.orm import Session

from marketplace.data.models.order import OrderModel
from marketplace.data.models.order_status_history import OrderStatusHistoryModel
from marketplace.data.models.preview_submission import PreviewSubmissionModel
from marketplace.domain.order_status import (
    ITEM_STATUS_FOR,
    ItemStatus,
    OrderEvent,
    OrderStatus,
    PreviewStatus,
    next_status,
)
from marketplace.domain.results import action
from marketplace.repos.order_repo import OrderRepo
from marketplace.services.notification_service import ChangeNotifier
from marketplace.services.refund_service import RefundService
from marketplace.utils.clock import utcnow
from marketplace.utils.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    MissingPersonalizationError,
    NotFoundError,
    NotOrderOwnerError,
    PreviewNotFoundError,
    RevisionLimitReachedError,
    ValidationError,
)
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import (
    DEFAULT_MAX_CHANGE_REQUESTS,
    DETAILS_WINDOW_SECONDS,
    HARD_MAX_CHANGE_REQUESTS,
    PREVIEW_WINDOW_SECONDS,
)

logger = get_logger(__name__)

BUYER = "buyer"
SELLER = "seller"
SYSTEM = "system"

# these line statuses only apply to lines that are personalized
_PERSONALIZATION_ITEM_STATUSES = frozenset(
    {
        ItemStatus.DETAILS_SUBMITTED,
        ItemStatus.PREVIEW_READY,
        ItemStatus.REVISION_REQUESTED,
        ItemStatus.APPROVED,
    }
)


def revision_limit(order: OrderModel) -> int:
    return min(order.max_change_requests or DEFAULT_MAX_CHANGE_REQUESTS, HARD_MAX_CHANGE_REQUESTS)


def order_to_dict(order: OrderModel) -> dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "buyer_id": order.buyer_id,
        "seller_id": order.seller_id,
        "status": order.status,
        "payment_status": order.payment_status,
        "version": order.version,
        "pricing": {
            "subtotal": order.subtotal,
            "personalization_charges": order.personalization_charges,
            "delivery_fee": order.delivery_fee,
            "platform_fee": order.platform_fee,
            "gst": order.gst,
            "discount": order.discount,
            "wallet_deduction": order.wallet_deduction,
            "total": order.total,
        },
        "requires_personalization": order.requires_personalization,
        "personalization_input": order.personalization_input,
        "change_request_count": order.change_request_count,
        "max_change_requests": revision_limit(order),
        "accept_deadline": order.accept_deadline,
        "details_deadline": order.details_deadline,
        "preview_deadline": order.preview_deadline,
        "cancellation_reason": order.cancellation_reason,
        "items": [
            {
                "id": i.id,
                "item_id": i.item_id,
                "variant_id": i.variant_id,
                "quantity": i.quantity,
                "unit_price": i.unit_price,
                "total_price": i.total_price,
                "requires_personalization": i.requires_personalization,
                "personalization_details": i.personalization_details,
                "status": i.status,
            }
            for i in order.items
        ],
        "previews": [
            {
                "id": p.id,
                "order_item_id": p.order_item_id,
                "preview_url": p.preview_url,
                "status": p.status,
                "seller_notes": p.seller_notes,
                "buyer_feedback": p.buyer_feedback,
                "submitted_at": p.submitted_at,
            }
            for p in order.previews
        ],
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def history_to_dict(entry: OrderStatusHistoryModel) -> dict[str, Any]:
    return {
        "event_type": entry.event_type,
        "title": entry.title,
        "description": entry.description,
        "from_status": entry.from_status,
        "to_status": entry.to_status,
        "actor": entry.actor,
        "metadata": entry.details or {},
        "created_at": entry.created_at,
    }


class OrderService:
    def __init__(self, db: Session, notifier: ChangeNotifier, refunds: RefundService):
        self.db = db
        self.repo = OrderRepo(db)
        self.notifier = notifier
        self.refunds = refunds

    #query
    def _load(self, order_id: int) -> OrderModel:
        order = self.repo.fetch_fresh(order_id)
        if not order:
            raise NotFoundError("Order not found.", order_id=order_id)
        return order

    def _load_as(self, order_id: int, user_id: int, role: str) -> OrderModel:
        order = self._load(order_id)
        owner = order.buyer_id if role == BUYER else order.seller_id
        if owner != user_id:
            raise NotOrderOwnerError(order_id=order_id, user_id=user_id, role=role)
        return order

    def _view(self, order: OrderModel) -> dict[str, Any]:
        # bulk updates and new previews are not reflected in loaded collections
        self.db.expire(order)
        return order_to_dict(order)

    def get_order(self, order_id: int, user_id: int) -> dict[str, Any]:
        order = self._load(order_id)
        if user_id not in (order.buyer_id, order.seller_id):
            raise NotOrderOwnerError(order_id=order_id, user_id=user_id)
        return self._view(order)

    def get_history(self, order_id: int, user_id: int) -> list[dict[str, Any]]:
        order = self._load(order_id)
        if user_id not in (order.buyer_id, order.seller_id):
            raise NotOrderOwnerError(order_id=order_id, user_id=user_id)
        return [history_to_dict(h) for h in self.repo.get_history(order_id)]

    def list_buyer_orders(self, buyer_id: int) -> list[dict[str, Any]]:
        return [order_to_dict(o) for o in self.repo.list_for_buyer(buyer_id)]

    def seller_queue(self, seller_id: int, statuses: list[str] | None = None) -> list[dict[str, Any]]:
        if statuses:
            statuses = [OrderStatus(s).value for s in statuses]
        return [order_to_dict(o) for o in self.repo.list_for_seller(seller_id, statuses)]

    #core
    def transition(
        self,
        order: OrderModel,
        event: OrderEvent,
        actor: str,
        title: str,
        description: str,
        changes: dict | None = None,
        details: dict | None = None,
        side_effects: Callable[[datetime], None] | None = None,
        now: datetime | None = None,
    ) -> OrderModel:
        now = now or utcnow()
        from_status = OrderStatus(order.status)
        target = next_status(from_status, event, order.requires_personalization)

        try:
            rowcount = self.repo.transition(
                order.id,
                from_status.value,
                order.version,
                {"status": target.value, "updated_at": now, **(changes or {})},
            )
            if rowcount == 0:
                raise ConcurrencyConflictError(order_id=order.id, status=from_status.value, event=event.value)

            item_status = ITEM_STATUS_FOR.get(target)
            if item_status is not None and target is not from_status:
                self.repo.update_items(
                    order.id,
                    {"status": item_status.value},
                    personalized_only=item_status in _PERSONALIZATION_ITEM_STATUSES,
                )

            if side_effects:
                side_effects(now)

            self.repo.add_history(
                OrderStatusHistoryModel(
                    order_id=order.id,
                    event_type=event.value,
                    title=title,
                    description=description,
                    from_status=from_status.value,
                    to_status=target.value,
                    actor=actor,
                    details=details or {},
                    created_at=now,
                )
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Order {order.id}: {from_status.value} -[{event.value}]-> {target.value} by {actor}")
        self.notifier.order_changed(order)
        return order

    #seller commands
    @action("order.accept")
    def accept(self, seller_id: int, order_id: int) -> dict[str, Any]:
        order = self._load_as(order_id, seller_id, SELLER)

        if not order.requires_personalization:
            # express path: accepted orders go straight into production
            self.transition(
                order,
                OrderEvent.ACCEPT_EXPRESS,
                SELLER,
                "Order accepted",
                "The seller accepted the order and started preparing it.",
            )
        elif order.personalization_input is not None:
            self.transition(
                order,
                OrderEvent.ACCEPT_WITH_DETAILS,
                SELLER,
                "Order accepted",
                "The seller accepted the order. Your personalization details were already received.",
            )
        else:
            now = utcnow()
            self.transition(
                order,
                OrderEvent.ACCEPT,
                SELLER,
                "Order accepted",
                "The seller accepted the order and is waiting for your personalization details.",
                changes={"details_deadline": now + timedelta(seconds=DETAILS_WINDOW_SECONDS)},
                now=now,
            )
        return self._view(order)

    @action("order.upload_preview")
    def upload_preview(
        self,
        seller_id: int,
        order_id: int,
        order_item_id: int,
        preview_url: str,
        seller_notes: str | None = None,
    ) -> dict[str, Any]:
        order = self._load_as(order_id, seller_id, SELLER)
        next_status(order.status, OrderEvent.UPLOAD_PREVIEW, order.requires_personalization)

        if not preview_url or not preview_url.strip():
            raise ValidationError("A preview image is required.", order_id=order_id)
        item = self.repo.get_item(order_id, order_item_id)
        if not item or not item.requires_personalization:
            raise ValidationError("That item does not take a personalization preview.", order_item_id=order_item_id)

        created = []

        def add_preview(now):
            created.append(
                self.repo.add_preview(
                    PreviewSubmissionModel(
                        order_id=order.id,
                        order_item_id=item.id,
                        preview_url=preview_url.strip(),
                        status=PreviewStatus.PENDING.value,
                        seller_notes=seller_notes,
                        submitted_at=now,
                    )
                )
            )

        now = utcnow()
        self.transition(
            order,
            OrderEvent.UPLOAD_PREVIEW,
            SELLER,
            "Preview ready",
            "The seller shared a preview of your personalized item. Please approve it or ask for changes.",
            changes={"preview_deadline": now + timedelta(seconds=PREVIEW_WINDOW_SECONDS)},
            details={"order_item_id": item.id},
            side_effects=add_preview,
            now=now,
        )
        self.notifier.preview_changed(created[0], order)
        return self._view(order)

    @action("order.start_production")
    def start_production(self, seller_id: int, order_id: int) -> dict[str, Any]:
        order = self._load_as(order_id, seller_id, SELLER)
        self.transition(
            order,
            OrderEvent.START_PRODUCTION,
            SELLER,
            "In production",
            "The seller started making your order.",
        )
        return self._view(order)

    @action("order.pack")
    def mark_packed(self, seller_id: int, order_id: int) -> dict[str, Any]:
        order = self._load_as(order_id, seller_id, SELLER)
        self.transition(order, OrderEvent.PACK, SELLER, "Packed", "Your order is packed and ready to ship.")
        return self._view(order)

    @action("order.dispatch")
    def dispatch(self, seller_id: int, order_id: int) -> dict[str, Any]:
        order = self._load_as(order_id, seller_id, SELLER)
        self.transition(order, OrderEvent.DISPATCH, SELLER, "Dispatched", "Your order is on its way.")
        return self._view(order)

    @action("order.deliver")
    def deliver(self, seller_id: int, order_id: int) -> dict[str, Any]:
        order = self._load_as(order_id, seller_id, SELLER)
        self.transition(order, OrderEvent.DELIVER, SELLER, "Delivered", "Your order was delivered.")
        return self._view(order)

    @action("order.refund")
    def refund(self, seller_id: int, order_id: int, reason: str) -> dict[str, Any]:
        order = self._load_as(order_id, seller_id, SELLER)
        if not reason or not reason.strip():
            raise ValidationError("A refund reason is required.", order_id=order_id)

        self.transition(
            order,
            OrderEvent.REFUND,
            SELLER,
            "Refunded",
            f"The order was refunded: {reason.strip()}",
            details={"reason": reason.strip()},
        )
        refunded = self.refunds.refund_order(order.id, reason.strip())
        data = self._view(order)
        data["refund_succeeded"] = refunded
        return data

    #buyer commands
    @action("order.submit_details")
    def submit_details(self, buyer_id: int, order_id: int, details: dict) -> dict[str, Any]:
        order = self._load_as(order_id, buyer_id, BUYER)
        if not order.requires_personalization:
            raise InvalidTransitionError("This order does not need personalization details.", order_id=order_id)
        next_status(order.status, OrderEvent.SUBMIT_DETAILS, order.requires_personalization)
        if not details or not any(str(v).strip() for v in details.values() if v is not None):
            raise MissingPersonalizationError(order_id=order_id)

        def store_details(now):
            self.repo.update_items(
                order.id,
                {"personalization_details": details, "status": ItemStatus.DETAILS_SUBMITTED.value},
                personalized_only=True,
            )

        self.transition(
            order,
            OrderEvent.SUBMIT_DETAILS,
            BUYER,
            "Details submitted",
            "You shared your personalization details with the seller.",
            changes={"personalization_input": details},
            details={"fields": sorted(details)},
            side_effects=store_details,
        )
        return self._view(order)

    def _pending_preview(self, order: OrderModel, preview_id: int | None) -> PreviewSubmissionModel:
        if preview_id is not None:
            preview = self.repo.get_preview(order.id, preview_id)
        else:
            preview = self.repo.latest_pending_preview(order.id)
        if not preview or preview.status != PreviewStatus.PENDING.value:
            raise PreviewNotFoundError(order_id=order.id, preview_id=preview_id)
        return preview

    def _decide_preview(self, preview: PreviewSubmissionModel, status: PreviewStatus, feedback: str | None = None):
        def decide(now):
            updated = self.repo.update_preview(
                preview.id,
                PreviewStatus.PENDING.value,
                {"status": status.value, "buyer_feedback": feedback, "decided_at": now},
            )
            if updated == 0:
                raise ConcurrencyConflictError(preview_id=preview.id)

        return decide

    @action("order.approve_preview")
    def approve_preview(self, buyer_id: int, order_id: int, preview_id: int | None = None) -> dict[str, Any]:
        order = self._load_as(order_id, buyer_id, BUYER)
        next_status(order.status, OrderEvent.APPROVE_PREVIEW, order.requires_personalization)
        preview = self._pending_preview(order, preview_id)

        self.transition(
            order,
            OrderEvent.APPROVE_PREVIEW,
            BUYER,
            "Preview approved",
            "You approved the preview. The seller can start making your item.",
            changes={"preview_deadline": None},
            details={"preview_submission_id": preview.id},
            side_effects=self._decide_preview(preview, PreviewStatus.APPROVED),
        )
        self.notifier.preview_changed(preview, order)
        return self._view(order)

    @action("order.request_revision")
    def request_revision(
        self,
        buyer_id: int,
        order_id: int,
        feedback: str,
        preview_id: int | None = None,
    ) -> dict[str, Any]:
        order = self._load_as(order_id, buyer_id, BUYER)
        next_status(order.status, OrderEvent.REQUEST_REVISION, order.requires_personalization)

        limit = revision_limit(order)
        if order.change_request_count >= limit:
            raise RevisionLimitReachedError(
                f"You have used all {limit} change requests. Please approve the preview or contact support.",
                order_id=order_id,
                change_request_count=order.change_request_count,
                limit=limit,
            )
        if not feedback or not feedback.strip():
            raise ValidationError("Tell the seller what to change.", order_id=order_id)

        preview = self._pending_preview(order, preview_id)
        count = order.change_request_count + 1

        self.transition(
            order,
            OrderEvent.REQUEST_REVISION,
            BUYER,
            "Changes requested",
            f"You asked for changes ({count} of {limit}): {feedback.strip()}",
            changes={"change_request_count": count, "preview_deadline": None},
            details={"preview_submission_id": preview.id, "change_request_count": count, "limit": limit},
            side_effects=self._decide_preview(preview, PreviewStatus.CHANGE_REQUESTED, feedback.strip()),
        )
        self.notifier.preview_changed(preview, order)
        return self._view(order)

    #either party
    @action("order.cancel")
    def cancel(self, user_id: int, order_id: int, reason: str) -> dict[str, Any]:
        order = self._load(order_id)
        if user_id == order.buyer_id:
            actor = BUYER
            if order.status != OrderStatus.PLACED.value:
                raise InvalidTransitionError(
                    "The seller already accepted this order. Please contact the seller or support to cancel.",
                    order_id=order_id,
                    status=order.status,
                )
        elif user_id == order.seller_id:
            actor = SELLER
        else:
            raise NotOrderOwnerError(order_id=order_id, user_id=user_id)

        reason = (reason or "").strip() or f"cancelled by {actor}"
        self.transition(
            order,
            OrderEvent.CANCEL,
            actor,
            "Order cancelled",
            f"The order was cancelled by the {actor}: {reason}. A refund has been started.",
            changes={"cancellation_reason": reason, "cancelled_by": actor},
            details={"reason": reason},
        )
        refunded = self.refunds.refund_order(order.id, reason)
        data = self._view(order)
        data["refund_succeeded"] = refunded
        return data

    #system
    def auto_cancel(self, order: OrderModel, reason: str, description: str, now: datetime | None = None) -> OrderModel:
        """Cancellation is committed first; the refund is attempted after and may fail on its own."""
        self.transition(
            order,
            OrderEvent.AUTO_CANCEL,
            SYSTEM,
            "Order cancelled automatically",
            description,
            changes={"cancellation_reason": reason, "cancelled_by": SYSTEM},
            details={"reason": reason},
            now=now,
        )
        self.refunds.refund_order(order.id, reason)
        return order

    def auto_approve(self, order: OrderModel, now: datetime | None = None) -> OrderModel:
        preview = self.repo.latest_pending_preview(order.id)
        self.transition(
            order,
            OrderEvent.AUTO_APPROVE,
            SYSTEM,
            "Preview approved automatically",
            "No response was received within 24 hours, so the latest preview was approved automatically.",
            changes={"preview_deadline": None},
            details={"reason": "preview approval timeout", "preview_submission_id": preview.id if preview else None},
            side_effects=self._decide_preview(preview, PreviewStatus.APPROVED) if preview else None,
            now=now,
        )
        if preview:
            self.notifier.preview_changed(preview, order)
        return order
