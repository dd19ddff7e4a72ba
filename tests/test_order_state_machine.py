from decimal import Decimal

import pytest

from conftest import BUYER, SELLER, STRANGER
from marketplace.data.models import OrderModel, UserModel
from marketplace.domain.order_status import OrderEvent, OrderStatus, is_terminal, next_status
from marketplace.utils.errors import ConcurrencyConflictError, InvalidTransitionError


def history_events(market, order_id):
    return [h["event_type"] for h in market.orders().get_history(order_id, BUYER)]


class TestTransitionTable:
    def test_express_accept_goes_to_production(self):
        assert next_status(OrderStatus.PLACED, OrderEvent.ACCEPT_EXPRESS) is OrderStatus.IN_PRODUCTION

    def test_personalized_order_cannot_skip_the_preview(self):
        with pytest.raises(InvalidTransitionError):
            next_status(OrderStatus.CONFIRMED, OrderEvent.START_PRODUCTION, requires_personalization=True)

    def test_terminal_states_accept_nothing(self):
        for status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            assert is_terminal(status)
            with pytest.raises(InvalidTransitionError):
                next_status(status, OrderEvent.CANCEL)

    def test_dispatched_orders_cannot_be_cancelled(self):
        with pytest.raises(InvalidTransitionError) as exc:
            next_status("DISPATCHED", OrderEvent.CANCEL)

        assert exc.value.context == {"status": "DISPATCHED", "event": "CANCEL"}


def test_express_happy_path(market):
    order_id = market.place_order(item_id=1)
    orders = market.orders()

    assert orders.accept(SELLER, order_id).data["status"] == "IN_PRODUCTION"
    assert orders.mark_packed(SELLER, order_id).data["status"] == "PACKED"
    assert orders.dispatch(SELLER, order_id).data["status"] == "DISPATCHED"
    delivered = orders.deliver(SELLER, order_id).data

    assert delivered["status"] == "DELIVERED"
    assert [i["status"] for i in delivered["items"]] == ["delivered"]
    assert history_events(market, order_id) == ["ORDER_PLACED", "ACCEPT_EXPRESS", "PACK", "DISPATCH", "DELIVER"]


def test_personalized_happy_path(market, notifier):
    order_id = market.place_personalized_order()
    orders = market.orders()

    accepted = orders.accept(SELLER, order_id).data
    assert accepted["status"] == "CONFIRMED"
    assert accepted["details_deadline"] is not None

    details = orders.submit_details(BUYER, order_id, {"text": "Happy birthday, Meera"}).data
    assert details["status"] == "DETAILS_RECEIVED"
    assert details["items"][0]["personalization_details"] == {"text": "Happy birthday, Meera"}
    item_id = details["items"][0]["id"]

    preview = orders.upload_preview(SELLER, order_id, item_id, "https://cdn.example/p1.png").data
    assert preview["status"] == "PREVIEW_READY"
    assert preview["preview_deadline"] is not None
    assert [p["status"] for p in preview["previews"]] == ["pending"]

    revision = orders.request_revision(BUYER, order_id, "Larger font please").data
    assert revision["status"] == "REVISION_REQUESTED"
    assert revision["change_request_count"] == 1
    assert revision["previews"][0]["status"] == "change_requested"
    assert revision["previews"][0]["buyer_feedback"] == "Larger font please"

    orders.upload_preview(SELLER, order_id, item_id, "https://cdn.example/p2.png")
    approved = orders.approve_preview(BUYER, order_id).data
    assert approved["status"] == "APPROVED"
    assert [p["status"] for p in approved["previews"]] == ["change_requested", "approved"]

    assert orders.start_production(SELLER, order_id).data["status"] == "IN_PRODUCTION"
    assert len(notifier.previews) == 4


def test_details_before_acceptance(market):
    order_id = market.place_personalized_order()
    orders = market.orders()

    early = orders.submit_details(BUYER, order_id, {"text": "For Sam"}).data
    assert early["status"] == "PLACED"

    assert orders.accept(SELLER, order_id).data["status"] == "DETAILS_RECEIVED"


def test_revision_limit(market):
    order_id = market.place_personalized_order()
    orders = market.orders()
    orders.accept(SELLER, order_id)
    item_id = orders.submit_details(BUYER, order_id, {"text": "Hi"}).data["items"][0]["id"]

    for n in range(2):
        orders.upload_preview(SELLER, order_id, item_id, f"https://cdn.example/{n}.png")
        assert orders.request_revision(BUYER, order_id, "again").ok
    orders.upload_preview(SELLER, order_id, item_id, "https://cdn.example/last.png")
    events_before = history_events(market, order_id)

    result = orders.request_revision(BUYER, order_id, "one more")

    assert result.code == "revision_limit_reached"
    assert result.data["limit"] == 2
    order = orders.get_order(order_id, BUYER)
    assert order["status"] == "PREVIEW_READY"
    assert order["change_request_count"] == 2
    assert history_events(market, order_id) == events_before
    # approving is still possible
    assert orders.approve_preview(BUYER, order_id).ok


def test_invalid_move_changes_nothing(market):
    order_id = market.place_order()
    orders = market.orders()
    before = orders.get_order(order_id, BUYER)

    result = orders.dispatch(SELLER, order_id)

    assert result.code == "invalid_transition"
    assert result.kind == "state"
    after = orders.get_order(order_id, BUYER)
    assert (after["status"], after["version"]) == (before["status"], before["version"])
    assert history_events(market, order_id) == ["ORDER_PLACED"]


def test_unknown_preview(market):
    order_id = market.place_personalized_order()
    orders = market.orders()
    orders.accept(SELLER, order_id)
    item_id = orders.submit_details(BUYER, order_id, {"text": "Hi"}).data["items"][0]["id"]
    orders.upload_preview(SELLER, order_id, item_id, "https://cdn.example/1.png")

    result = orders.approve_preview(BUYER, order_id, preview_id=12345)

    assert result.code == "preview_not_found"


def test_preview_only_for_personalized_lines(market):
    order_id = market.place_order(item_id=1)
    orders = market.orders()
    item_id = orders.get_order(order_id, BUYER)["items"][0]["id"]

    result = orders.upload_preview(SELLER, order_id, item_id, "https://cdn.example/1.png")

    assert result.code == "invalid_transition"


def test_empty_details_are_rejected(market):
    order_id = market.place_personalized_order()

    result = market.orders().submit_details(BUYER, order_id, {"text": "  "})

    assert result.code == "missing_personalization"


def test_only_the_parties_may_act(market):
    order_id = market.place_order()
    orders = market.orders()

    assert orders.accept(BUYER, order_id).code == "forbidden"
    assert orders.cancel(STRANGER, order_id, "nope").code == "forbidden"
    assert orders.accept(SELLER, 999).code == "not_found"


class TestCancellation:
    def test_buyer_cancels_before_acceptance_and_is_refunded(self, db, market, gateway):
        db.get(UserModel, BUYER).wallet_balance = Decimal("50")
        db.commit()
        market.add(item_id=1)
        order_id = market.pay(market.checkout(use_wallet=True))["order_id"]

        result = market.orders().cancel(BUYER, order_id, "changed my mind")

        assert result.ok
        data = result.data
        assert data["status"] == "CANCELLED"
        assert data["cancellation_reason"] == "changed my mind"
        assert data["payment_status"] == "refunded"
        assert data["refund_succeeded"] is True
        assert [i["status"] for i in data["items"]] == ["cancelled"]
        assert gateway.refund_calls()[0]["amount"] == 25000
        db.expire_all()
        assert db.get(UserModel, BUYER).wallet_balance == Decimal("50.00")

    def test_buyer_cannot_cancel_after_acceptance(self, market):
        order_id = market.place_order()
        market.orders().accept(SELLER, order_id)

        result = market.orders().cancel(BUYER, order_id, "too late")

        assert result.code == "invalid_transition"

    def test_seller_cancels_in_production(self, market):
        order_id = market.place_order()
        orders = market.orders()
        orders.accept(SELLER, order_id)

        data = orders.cancel(SELLER, order_id, "kiln broke").data

        assert data["status"] == "CANCELLED"
        assert history_events(market, order_id)[-1] == "CANCEL"

    def test_failed_refund_still_cancels_and_is_retried(self, db, market, gateway):
        order_id = market.place_order()
        gateway.configure(refunds_succeed=False)

        data = market.orders().cancel(BUYER, order_id, "changed my mind").data

        assert data["status"] == "CANCELLED"
        assert data["payment_status"] == "refund_failed"
        assert data["refund_succeeded"] is False

        gateway.configure(refunds_succeed=True)
        assert market.enforcer().retry_refunds() == 1
        db.expire_all()
        assert db.get(OrderModel, order_id).payment_status == "refunded"

    def test_refund_is_never_issued_twice(self, market, gateway):
        order_id = market.place_order()
        market.orders().cancel(BUYER, order_id, "changed my mind")

        assert market.orders().refunds.refund_order(order_id, "again") is None
        assert len(gateway.refund_calls()) == 1


def test_seller_refund_after_delivery(db, market):
    order_id = market.place_order()
    orders = market.orders()
    for step in (orders.accept, orders.mark_packed, orders.dispatch, orders.deliver):
        step(SELLER, order_id)

    data = orders.refund(SELLER, order_id, "arrived broken").data

    assert data["status"] == "REFUNDED"
    assert data["payment_status"] == "refunded"
    db.expire_all()
    assert db.get(OrderModel, order_id).refunded_amount == Decimal("300.00")


def test_stale_writer_loses(db, market, session_factory):
    order_id = market.place_order()
    other = session_factory()
    try:
        stale = market.orders(other).repo.fetch_fresh(order_id)
        market.orders().accept(SELLER, order_id)

        with pytest.raises(ConcurrencyConflictError):
            market.orders(other).transition(stale, OrderEvent.CANCEL, "seller", "Order cancelled", "late")
    finally:
        other.close()
    assert market.orders().get_order(order_id, BUYER)["status"] == "IN_PRODUCTION"
