# marketplace/domain/order_status.py
from enum import Enum

from marketplace.utils.errors import InvalidTransitionError


class OrderStatus(str, Enum):
    PLACED = "PLACED"
    CONFIRMED = "CONFIRMED"
    DETAILS_RECEIVED = "DETAILS_RECEIVED"
    PREVIEW_READY = "PREVIEW_READY"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    APPROVED = "APPROVED"
    IN_PRODUCTION = "IN_PRODUCTION"
    PACKED = "PACKED"
    DISPATCHED = "DISPATCHED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class OrderEvent(str, Enum):
    ACCEPT = "ACCEPT"
    ACCEPT_WITH_DETAILS = "ACCEPT_WITH_DETAILS"
    ACCEPT_EXPRESS = "ACCEPT_EXPRESS"
    SUBMIT_DETAILS = "SUBMIT_DETAILS"
    UPLOAD_PREVIEW = "UPLOAD_PREVIEW"
    APPROVE_PREVIEW = "APPROVE_PREVIEW"
    AUTO_APPROVE = "AUTO_APPROVE"
    REQUEST_REVISION = "REQUEST_REVISION"
    START_PRODUCTION = "START_PRODUCTION"
    PACK = "PACK"
    DISPATCH = "DISPATCH"
    DELIVER = "DELIVER"
    CANCEL = "CANCEL"
    AUTO_CANCEL = "AUTO_CANCEL"
    REFUND = "REFUND"


class PaymentStatus(str, Enum):
    PAID = "paid"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"
    REFUND_FAILED = "refund_failed"


class ItemStatus(str, Enum):
    PLACED = "placed"
    AWAITING_DETAILS = "awaiting_details"
    DETAILS_SUBMITTED = "details_submitted"
    PREVIEW_READY = "preview_ready"
    REVISION_REQUESTED = "revision_requested"
    APPROVED = "approved"
    IN_PRODUCTION = "in_production"
    PACKED = "packed"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PreviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CHANGE_REQUESTED = "change_requested"


S = OrderStatus
E = OrderEvent

TERMINAL = frozenset({S.DELIVERED, S.CANCELLED, S.REFUNDED})

_CANCELLABLE = (
    S.PLACED,
    S.CONFIRMED,
    S.DETAILS_RECEIVED,
    S.PREVIEW_READY,
    S.REVISION_REQUESTED,
    S.APPROVED,
    S.IN_PRODUCTION,
    S.PACKED,
)

# state x event -> state; a missing key is a rejected transition
TRANSITIONS: dict[tuple[OrderStatus, OrderEvent], OrderStatus] = {
    (S.PLACED, E.ACCEPT): S.CONFIRMED,
    (S.PLACED, E.ACCEPT_WITH_DETAILS): S.DETAILS_RECEIVED,
    (S.PLACED, E.ACCEPT_EXPRESS): S.IN_PRODUCTION,
    (S.PLACED, E.SUBMIT_DETAILS): S.PLACED,
    (S.CONFIRMED, E.SUBMIT_DETAILS): S.DETAILS_RECEIVED,
    (S.DETAILS_RECEIVED, E.SUBMIT_DETAILS): S.DETAILS_RECEIVED,
    (S.REVISION_REQUESTED, E.SUBMIT_DETAILS): S.DETAILS_RECEIVED,
    (S.DETAILS_RECEIVED, E.UPLOAD_PREVIEW): S.PREVIEW_READY,
    (S.REVISION_REQUESTED, E.UPLOAD_PREVIEW): S.PREVIEW_READY,
    (S.PREVIEW_READY, E.APPROVE_PREVIEW): S.APPROVED,
    (S.PREVIEW_READY, E.AUTO_APPROVE): S.APPROVED,
    (S.PREVIEW_READY, E.REQUEST_REVISION): S.REVISION_REQUESTED,
    (S.APPROVED, E.START_PRODUCTION): S.IN_PRODUCTION,
    (S.CONFIRMED, E.START_PRODUCTION): S.IN_PRODUCTION,
    (S.IN_PRODUCTION, E.PACK): S.PACKED,
    (S.PACKED, E.DISPATCH): S.DISPATCHED,
    (S.DISPATCHED, E.DELIVER): S.DELIVERED,
    (S.DISPATCHED, E.REFUND): S.REFUNDED,
    (S.DELIVERED, E.REFUND): S.REFUNDED,
}
for _state in _CANCELLABLE:
    TRANSITIONS[(_state, E.CANCEL)] = S.CANCELLED
    TRANSITIONS[(_state, E.AUTO_CANCEL)] = S.CANCELLED

# per-line status that follows an order status
ITEM_STATUS_FOR: dict[OrderStatus, ItemStatus] = {
    S.DETAILS_RECEIVED: ItemStatus.DETAILS_SUBMITTED,
    S.PREVIEW_READY: ItemStatus.PREVIEW_READY,
    S.REVISION_REQUESTED: ItemStatus.REVISION_REQUESTED,
    S.APPROVED: ItemStatus.APPROVED,
    S.IN_PRODUCTION: ItemStatus.IN_PRODUCTION,
    S.PACKED: ItemStatus.PACKED,
    S.DISPATCHED: ItemStatus.DISPATCHED,
    S.DELIVERED: ItemStatus.DELIVERED,
    S.CANCELLED: ItemStatus.CANCELLED,
    S.REFUNDED: ItemStatus.REFUNDED,
}


def next_status(current: OrderStatus | str, event: OrderEvent, requires_personalization: bool = False) -> OrderStatus:
    current = OrderStatus(current)
    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransitionError(
            f"Cannot {event.value.lower().replace('_', ' ')} an order that is {current.value}.",
            status=current.value,
            event=event.value,
        )

    # personalized orders reach production only through an approved preview
    if current is S.CONFIRMED and event is E.START_PRODUCTION and requires_personalization:
        raise InvalidTransitionError(
            "Personalization details are required before production can start.",
            status=current.value,
            event=event.value,
        )

    return target


def is_terminal(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in TERMINAL
