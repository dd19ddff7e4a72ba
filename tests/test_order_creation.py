"""
Payment verification and order creation.

The verify path and the webhook path race for the same draft; exactly one
order may come out of it, and both callers must see that order.
"""
import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from conftest import BUYER
from marketplace.data.models import (
    CartItemModel,
    DraftOrderModel,
    OrderModel,
    OrderStatusHistoryModel,
    StockLevelModel,
    StockReservationModel,
    UserModel,
)
from marketplace.utils.clock import utcnow
from marketplace.utils.errors import DraftConsumedError


def count(db, model):
    db.expire_all()
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def stock_of(db, item_id):
    db.expire_all()
    return db.execute(
        select(StockLevelModel.quantity).where(StockLevelModel.item_id == item_id, StockLevelModel.variant_id.is_(None))
    ).scalar_one()


def verify(market, checkout, payment_id="pay_0001", signature=None, db=None):
    return market.creation(db).verify_payment(
        gateway_order_id=checkout["gateway_order_id"],
        payment_id=payment_id,
        signature=signature or market.gateway.sign(checkout["gateway_order_id"], payment_id),
        draft_id=checkout["draft_id"],
    )


class TestVerify:
    def test_creates_order_in_one_step(self, db, market, notifier):
        market.add(item_id=1, quantity=2)
        checkout = market.checkout()

        result = verify(market, checkout)

        assert result.ok
        assert result.data["created"] is True
        assert result.data["status"] == "PLACED"
        assert result.data["order_number"].startswith("ORD-")

        order = db.get(OrderModel, result.data["order_id"])
        assert order.payment_status == "paid"
        assert order.gateway_payment_id == "pay_0001"
        assert order.total == Decimal("500.00") + Decimal("10.00")
        assert order.accept_deadline is not None
        assert [i.status for i in order.items] == ["placed"]
        assert order.items[0].unit_price == Decimal("250.00")

        assert stock_of(db, 1) == 8
        assert count(db, StockReservationModel) == 0
        assert count(db, DraftOrderModel) == 0
        assert count(db, CartItemModel) == 0

        history = list(db.execute(select(OrderStatusHistoryModel)).scalars())
        assert [(h.event_type, h.to_status, h.actor) for h in history] == [("ORDER_PLACED", "PLACED", "buyer")]
        assert notifier.orders == [(order.id, "PLACED")]

    def test_second_verify_returns_the_same_order(self, market):
        market.add(item_id=1)
        checkout = market.checkout()
        first = verify(market, checkout)

        again = verify(market, checkout)

        assert again.ok
        assert again.data["created"] is False
        assert again.data["order_id"] == first.data["order_id"]

    def test_invalid_signature(self, db, market):
        market.add(item_id=1)
        checkout = market.checkout()

        result = verify(market, checkout, signature="forged")

        assert result.code == "invalid_signature"
        assert result.next_action == "contact_support"
        assert count(db, OrderModel) == 0
        assert count(db, DraftOrderModel) == 1

    def test_draft_mismatch_is_rejected(self, market):
        market.add(item_id=1)
        checkout = market.checkout()

        result = market.creation().verify_payment(
            gateway_order_id=checkout["gateway_order_id"],
            payment_id="pay_1",
            signature=market.gateway.sign(checkout["gateway_order_id"], "pay_1"),
            draft_id=checkout["draft_id"] + 100,
        )

        assert result.code == "draft_consumed"

    def test_wallet_is_debited_with_the_order(self, db, market):
        db.get(UserModel, BUYER).wallet_balance = Decimal("1000")
        db.commit()
        market.add(item_id=1)

        result = verify(market, market.checkout(use_wallet=True))

        order = db.get(OrderModel, result.data["order_id"])
        assert order.wallet_deduction == Decimal("299.00")
        assert order.total == Decimal("1.00")
        db.expire_all()
        assert db.get(UserModel, BUYER).wallet_balance == Decimal("701.00")

    def test_personalized_order(self, db, market):
        order_id = market.place_personalized_order()

        order = db.get(OrderModel, order_id)
        assert order.requires_personalization is True
        assert order.personalization_charges == Decimal("99.00")
        assert [i.status for i in order.items] == ["awaiting_details"]
        assert order.items[0].unit_price == Decimal("549.00")


class TestWebhook:
    def test_webhook_after_verify_is_a_no_op(self, db, market):
        market.add(item_id=1)
        checkout = market.checkout()
        first = verify(market, checkout)

        result = market.creation().handle_webhook(checkout["gateway_order_id"], "pay_0001", "captured")

        assert result.data == {**first.data, "created": False}
        assert count(db, OrderModel) == 1

    def test_webhook_first_then_verify(self, db, market):
        market.add(item_id=1)
        checkout = market.checkout()

        by_webhook = market.creation().handle_webhook(checkout["gateway_order_id"], "pay_0001", "captured")
        by_client = verify(market, checkout)

        assert by_webhook.data["created"] is True
        assert by_client.data["created"] is False
        assert by_client.data["order_id"] == by_webhook.data["order_id"]
        history = list(db.execute(select(OrderStatusHistoryModel)).scalars())
        assert [h.actor for h in history] == ["gateway"]

    def test_failed_payment_is_ignored(self, db, market):
        market.add(item_id=1)
        checkout = market.checkout()

        result = market.creation().handle_webhook(checkout["gateway_order_id"], "pay_0001", "failed")

        assert result.data == {"ignored": True, "status": "failed"}
        assert count(db, OrderModel) == 0

    def test_captured_payment_without_draft_is_refunded(self, market, gateway):
        result = market.creation().handle_webhook("order_unknown", "pay_lost", "captured")

        assert result.data == {"orphaned": True, "refunded": True}
        assert gateway.refund_calls()[0]["payment_id"] == "pay_lost"


def test_verify_and_webhook_race_creates_one_order(db, market, session_factory):
    market.add(item_id=1)
    checkout = market.checkout()
    barrier = threading.Barrier(2)
    results = {}

    def by_client():
        session = session_factory()
        try:
            barrier.wait()
            results["client"] = verify(market, checkout, db=session)
        finally:
            session.close()

    def by_gateway():
        session = session_factory()
        try:
            barrier.wait()
            results["gateway"] = market.creation(session).handle_webhook(
                checkout["gateway_order_id"], "pay_0001", "captured"
            )
        finally:
            session.close()

    threads = [threading.Thread(target=by_client), threading.Thread(target=by_gateway)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results["client"].ok and results["gateway"].ok
    assert results["client"].data["order_id"] == results["gateway"].data["order_id"]
    assert sorted([results["client"].data["created"], results["gateway"].data["created"]]) == [False, True]
    assert count(db, OrderModel) == 1
    assert count(db, OrderStatusHistoryModel) == 1
    assert stock_of(db, 1) == 9


class TestCreationFailure:
    def test_stock_gone_keeps_draft_and_remembers_payment(self, db, market):
        market.add(item_id=1, quantity=2)
        checkout = market.checkout()
        db.execute(update(StockLevelModel).where(StockLevelModel.item_id == 1).values(quantity=1))
        db.commit()

        result = verify(market, checkout, payment_id="pay_kept")

        assert result.code == "insufficient_stock"
        assert count(db, OrderModel) == 0
        draft = db.get(DraftOrderModel, checkout["draft_id"])
        assert draft.gateway_payment_id == "pay_kept"
        assert count(db, CartItemModel) == 1

    def test_sweep_refunds_payment_of_expired_draft(self, db, market, gateway):
        market.add(item_id=1, quantity=2)
        checkout = market.checkout()
        db.execute(update(StockLevelModel).where(StockLevelModel.item_id == 1).values(quantity=0))
        db.commit()
        verify(market, checkout, payment_id="pay_kept")

        expired = market.enforcer().cleanup_drafts(utcnow() + timedelta(hours=1))

        assert expired == 1
        assert [c["payment_id"] for c in gateway.refund_calls()] == ["pay_kept"]
        assert count(db, DraftOrderModel) == 0

    def test_sweep_keeps_draft_when_refund_fails(self, db, market, gateway):
        market.add(item_id=1)
        checkout = market.checkout()
        db.execute(update(StockLevelModel).where(StockLevelModel.item_id == 1).values(quantity=0))
        db.commit()
        verify(market, checkout, payment_id="pay_kept")
        gateway.configure(refunds_succeed=False)

        expired = market.enforcer().cleanup_drafts(utcnow() + timedelta(hours=1))

        assert expired == 0
        db.expire_all()
        draft = db.get(DraftOrderModel, checkout["draft_id"])
        assert draft.gateway_payment_id == "pay_kept"
        assert draft.refund_claimed is False

    def test_late_retry_cannot_use_a_draft_the_sweep_refunded(self, db, market, gateway, session_factory):
        market.add(item_id=1)
        checkout = market.checkout()
        db.execute(update(StockLevelModel).where(StockLevelModel.item_id == 1).values(quantity=0))
        db.commit()
        verify(market, checkout, payment_id="pay_kept")
        db.execute(update(StockLevelModel).where(StockLevelModel.item_id == 1).values(quantity=10))
        db.commit()

        retry_session = session_factory()
        try:
            # the retry read the draft before the sweep got to it
            draft = retry_session.get(DraftOrderModel, checkout["draft_id"])
            assert market.enforcer().cleanup_drafts(utcnow() + timedelta(hours=1)) == 1

            with pytest.raises(DraftConsumedError):
                market.creation(retry_session).create_from_draft(draft, "pay_kept")
        finally:
            retry_session.close()

        assert [c["payment_id"] for c in gateway.refund_calls()] == ["pay_kept"]
        assert count(db, OrderModel) == 0
        assert stock_of(db, 1) == 10

    def test_claimed_draft_is_not_turned_into_an_order(self, db, market):
        market.add(item_id=1)
        checkout = market.checkout()
        db.execute(
            update(DraftOrderModel)
            .where(DraftOrderModel.id == checkout["draft_id"])
            .values(gateway_payment_id="pay_kept", refund_claimed=True)
        )
        db.commit()

        result = verify(market, checkout, payment_id="pay_kept")

        assert result.code == "draft_consumed"
        assert count(db, OrderModel) == 0
        assert count(db, DraftOrderModel) == 1


class TestStaleDraft:
    def _age(self, db, draft_id):
        db.get(DraftOrderModel, draft_id).created_at = utcnow() - timedelta(hours=1)
        db.commit()

    def test_small_drift_keeps_the_charged_amount(self, db, market):
        market.add(item_id=1)
        checkout = market.checkout()
        self._age(db, checkout["draft_id"])
        market.catalog.items[1]["base_price"] = 252.00

        result = verify(market, checkout)

        assert result.ok
        assert db.get(OrderModel, result.data["order_id"]).total == Decimal("300.00")

    def test_extreme_drift_rejects_and_keeps_draft(self, db, market):
        market.add(item_id=1)
        checkout = market.checkout()
        self._age(db, checkout["draft_id"])
        market.catalog.items[1]["base_price"] = 1000.00

        result = verify(market, checkout)

        assert result.code == "price_mismatch"
        assert count(db, OrderModel) == 0
        assert count(db, DraftOrderModel) == 1

    def test_item_withdrawn_since_checkout(self, db, market):
        market.add(item_id=1)
        checkout = market.checkout()
        self._age(db, checkout["draft_id"])
        market.catalog.items[1]["is_active"] = False

        result = verify(market, checkout)

        assert result.code == "item_unavailable"
        assert count(db, OrderModel) == 0
