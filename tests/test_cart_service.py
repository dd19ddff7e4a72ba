import threading
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from conftest import BUYER, SECOND_BUYER, PERSONALIZED
from marketplace.data.models import CartModel
from marketplace.repos.cart_repo import CartRepo
from marketplace.services.cart_service import CartService, line_key
from marketplace.services.stock_ledger import StockLedger
from marketplace.utils.clock import utcnow
from marketplace.utils.errors import ConcurrencyConflictError


@pytest.fixture
def carts(db, catalog):
    return CartService(db, catalog)


def test_line_key_ignores_addon_order():
    a = line_key(1, None, None, [{"id": 2}, {"id": 1}])
    b = line_key(1, None, {"enabled": False, "option_id": "x"}, [{"id": 1}, {"id": 2}])

    assert a == b == "1:-:-:1,2"
    assert line_key(2, 1, PERSONALIZED, []) == "2:1:engraving:"


def test_empty_cart_view(carts):
    cart = carts.get_cart(BUYER)

    assert cart["cart_id"] is None
    assert cart["items"] == []
    assert cart["version"] == 0


class TestAddItem:
    def test_first_add_creates_cart_and_bumps_version(self, carts):
        result = carts.add_item(user_id=BUYER, item_id=1, quantity=2)

        assert result.ok
        assert result.data["seller_id"] == 2
        assert result.data["version"] == 2
        assert [(i["item_id"], i["quantity"]) for i in result.data["items"]] == [(1, 2)]

    def test_identical_lines_merge(self, carts):
        carts.add_item(user_id=BUYER, item_id=1, quantity=1, selected_addons=[{"id": 1}])
        result = carts.add_item(user_id=BUYER, item_id=1, quantity=2, selected_addons=[{"id": 1}])

        assert len(result.data["items"]) == 1
        assert result.data["items"][0]["quantity"] == 3

    def test_different_addons_are_separate_lines(self, carts):
        carts.add_item(user_id=BUYER, item_id=1, quantity=1, selected_addons=[{"id": 1}])
        result = carts.add_item(user_id=BUYER, item_id=1, quantity=1, selected_addons=[{"id": 2}])

        assert len(result.data["items"]) == 2

    def test_second_seller_is_rejected(self, carts):
        carts.add_item(user_id=BUYER, item_id=1)
        result = carts.add_item(user_id=BUYER, item_id=4)

        assert not result.ok
        assert result.code == "seller_mismatch"
        assert result.next_action == "clear_cart"

    def test_inactive_item_is_rejected(self, carts):
        result = carts.add_item(user_id=BUYER, item_id=3)

        assert result.code == "item_unavailable"
        assert result.kind == "validation"

    def test_unknown_variant_is_rejected(self, carts):
        result = carts.add_item(user_id=BUYER, item_id=2, variant_id=9, personalization=PERSONALIZED)

        assert result.code == "item_unavailable"

    def test_quantity_limit(self, carts):
        result = carts.add_item(user_id=BUYER, item_id=1, quantity=11)

        assert result.code == "validation_error"

    def test_stock_reserved_by_others_is_not_offered(self, db, carts):
        StockLedger(db).reserve(SECOND_BUYER, [{"item_id": 2, "variant_id": 2, "quantity": 2}], draft_id=1)

        result = carts.add_item(user_id=BUYER, item_id=2, variant_id=2, quantity=2, personalization=PERSONALIZED)

        assert result.code == "insufficient_stock"
        assert result.data["available"] == 1


class TestChangeLines:
    def test_quantity_zero_removes_the_line(self, carts):
        line_id = carts.add_item(user_id=BUYER, item_id=1).data["items"][0]["id"]

        result = carts.update_quantity(user_id=BUYER, cart_item_id=line_id, quantity=0)

        assert result.ok
        assert result.data["items"] == []
        assert result.data["seller_id"] is None

    def test_update_quantity(self, carts):
        line_id = carts.add_item(user_id=BUYER, item_id=1).data["items"][0]["id"]

        result = carts.update_quantity(user_id=BUYER, cart_item_id=line_id, quantity=4)

        assert result.data["items"][0]["quantity"] == 4

    def test_update_beyond_stock(self, carts):
        line_id = carts.add_item(user_id=BUYER, item_id=2, variant_id=2, personalization=PERSONALIZED).data["items"][0]["id"]

        result = carts.update_quantity(user_id=BUYER, cart_item_id=line_id, quantity=4)

        assert result.code == "insufficient_stock"

    def test_removing_unknown_line(self, carts):
        carts.add_item(user_id=BUYER, item_id=1)

        result = carts.remove_item(user_id=BUYER, cart_item_id=999)

        assert result.code == "not_found"

    def test_clear_resets_seller(self, carts):
        carts.add_item(user_id=BUYER, item_id=1)

        result = carts.clear_cart(user_id=BUYER)

        assert result.ok
        assert result.data["items"] == []
        assert result.data["seller_id"] is None
        # a cleared cart takes items from any store
        assert carts.add_item(user_id=BUYER, item_id=4).ok


def test_stale_version_is_a_conflict(db, carts):
    cart_id = carts.add_item(user_id=BUYER, item_id=1).data["cart_id"]
    stale = SimpleNamespace(id=cart_id, version=1)

    with pytest.raises(ConcurrencyConflictError):
        carts._bump(stale, utcnow())


def test_concurrent_first_adds_share_one_cart(db, session_factory, catalog, monkeypatch):
    barrier = threading.Barrier(2)
    create_cart = CartRepo.create_cart

    def create_together(self, cart):
        # both requests have already seen that the buyer has no cart
        barrier.wait(timeout=10)
        return create_cart(self, cart)

    monkeypatch.setattr(CartRepo, "create_cart", create_together)
    outcomes = []

    def add(item_id):
        session = session_factory()
        try:
            outcomes.append(CartService(session, catalog).add_item(user_id=BUYER, item_id=item_id))
        finally:
            session.close()

    threads = [threading.Thread(target=add, args=(1,)) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(outcomes) == 2
    assert any(r.ok for r in outcomes)
    db.expire_all()
    active = db.execute(select(CartModel).where(CartModel.user_id == BUYER, CartModel.status == "ACTIVE")).scalars().all()
    assert len(active) == 1

    monkeypatch.setattr(CartRepo, "create_cart", create_cart)
    again = CartService(db, catalog).add_item(user_id=BUYER, item_id=1)
    assert again.ok
    assert again.data["cart_id"] == active[0].id
