# marketplace/services/cart_service.py
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.data.models.cart import CartModel
from marketplace.data.models.cart_item import CartItemModel
from marketplace.domain.results import action
from marketplace.repos.cart_repo import CartRepo
from marketplace.services.catalog_client import CatalogClient, price_line
from marketplace.services.stock_ledger import StockLedger
from marketplace.utils.clock import utcnow
from marketplace.utils.errors import (
    ValidationError,
    NotFoundError,
    SellerMismatchError,
    InsufficientStockError,
    ConcurrencyConflictError,
)
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import MAX_ITEM_QUANTITY

logger = get_logger(__name__)


def line_key(item_id: int, variant_id: int | None, personalization: dict | None, selected_addons: list | None) -> str:
    """Identical lines (item, variant, personalization option, add-on set) share a key."""
    personalization = personalization or {}
    option = personalization.get("option_id") if personalization.get("enabled") else None
    addons = ",".join(str(a) for a in sorted(int(a["id"]) for a in selected_addons or []))
    return f"{item_id}:{variant_id if variant_id is not None else '-'}:{option or '-'}:{addons}"


class CartService:
    """
    Server-authoritative cart, one active cart per buyer.

    commands (add, update, remove, clear) bump the cart version with a
    conditional update, query (get) is read only
    """

    def __init__(self, db: Session, catalog: CatalogClient):
        self.db = db
        self.repo = CartRepo(db)
        self.catalog = catalog
        self.ledger = StockLedger(db)

    #query
    def get_cart(self, user_id: int) -> dict[str, Any]:
        cart = self.repo.get_active_cart_by_user(user_id)
        if not cart:
            return {
                "cart_id": None,
                "user_id": user_id,
                "seller_id": None,
                "status": "ACTIVE",
                "version": 0,
                "items": [],
                "updated_at": None,
            }
        return self._to_dict(cart)

    def _to_dict(self, cart: CartModel) -> dict[str, Any]:
        items = self.repo.get_cart_items(cart.id)
        return {
            "cart_id": cart.id,
            "user_id": cart.user_id,
            "seller_id": cart.seller_id,
            "status": cart.status,
            "version": cart.version,
            "items": [
                {
                    "id": i.id,
                    "item_id": i.item_id,
                    "variant_id": i.variant_id,
                    "quantity": i.quantity,
                    "personalization": i.personalization,
                    "selected_addons": i.selected_addons or [],
                }
                for i in items
            ],
            "updated_at": cart.updated_at,
        }

    def _get_or_create(self, user_id: int, now: datetime) -> CartModel:
        cart = self.repo.get_active_cart_by_user(user_id)
        if cart:
            return cart
        logger.info(f"Creating cart for user {user_id}")
        try:
            return self.repo.create_cart(CartModel(user_id=user_id, status="ACTIVE", version=1, updated_at=now))
        except IntegrityError:
            # a concurrent request created it first
            self.repo.rollback()
            logger.info(f"Cart for user {user_id} was created concurrently, using it")
            cart = self.repo.get_active_cart_by_user(user_id)
            if not cart:
                raise ConcurrencyConflictError("Your cart was changed elsewhere. Please retry.", user_id=user_id)
            return cart

    def _require_cart(self, user_id: int) -> CartModel:
        cart = self.repo.get_active_cart_by_user(user_id)
        if not cart:
            raise NotFoundError("You do not have an active cart.", user_id=user_id)
        return cart

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError("Quantity must be at least 1.", quantity=quantity)
        if quantity > MAX_ITEM_QUANTITY:
            raise ValidationError(f"You can add at most {MAX_ITEM_QUANTITY} of an item.", quantity=quantity)

    def _bump(self, cart: CartModel, now: datetime, **changes) -> None:
        # optimistic locking: update carts set version = v + 1 where id = :id and version = v
        rowcount = self.repo.update_cart_version(
            cart_id=cart.id,
            old_version=cart.version,
            new_data={"version": cart.version + 1, "updated_at": now, **changes},
        )
        if rowcount == 0:
            self.repo.rollback()
            raise ConcurrencyConflictError("Your cart was changed elsewhere. Please retry.", cart_id=cart.id)
        self.repo.commit()

    #commands
    @action("cart.add_item")
    def add_item(
        self,
        user_id: int,
        item_id: int,
        quantity: int = 1,
        variant_id: int | None = None,
        personalization: dict | None = None,
        selected_addons: list | None = None,
    ) -> dict[str, Any]:
        self._check_quantity(quantity)
        now = utcnow()

        logger.info(f"Fetching item {item_id} from catalog for cart of user {user_id}")
        item = self.catalog.fetch_item(item_id)
        line = {
            "item_id": item_id,
            "variant_id": variant_id,
            "quantity": quantity,
            "personalization": personalization,
            "selected_addons": selected_addons or [],
        }
        # raises if the item, variant or an add-on is gone
        price_line(item, line)

        cart = self._get_or_create(user_id, now)
        items = self.repo.get_cart_items(cart.id)
        if items and cart.seller_id is not None and cart.seller_id != item["seller_id"]:
            raise SellerMismatchError(cart_seller_id=cart.seller_id, item_seller_id=item["seller_id"])

        key = line_key(item_id, variant_id, personalization, selected_addons)
        existing = self.repo.get_cart_item_by_key(cart.id, key)
        new_quantity = quantity + (existing.quantity if existing else 0)
        self._check_quantity(new_quantity)

        # advisory; the ledger re-checks at checkout and at order creation
        available = self.ledger.available(item_id, variant_id, excluding_buyer=user_id, now=now)
        if available < new_quantity:
            raise InsufficientStockError(item_id, variant_id, new_quantity, available)

        if existing:
            logger.info(f"Item {item_id} already in cart {cart.id}, quantity {existing.quantity} -> {new_quantity}")
            existing.quantity = new_quantity
            self.repo.add_cart_item(existing)
        else:
            self.repo.add_cart_item(
                CartItemModel(
                    cart_id=cart.id,
                    item_id=item_id,
                    variant_id=variant_id,
                    quantity=quantity,
                    personalization=personalization,
                    selected_addons=selected_addons or [],
                    line_key=key,
                )
            )

        self._bump(cart, now, seller_id=item["seller_id"])
        logger.info(f"Item {item_id} added to cart {cart.id}, version {cart.version}")
        return self._to_dict(cart)

    @action("cart.update_quantity")
    def update_quantity(self, user_id: int, cart_item_id: int, quantity: int) -> dict[str, Any]:
        if quantity == 0:
            return self._remove(user_id, cart_item_id)

        self._check_quantity(quantity)
        now = utcnow()
        cart = self._require_cart(user_id)
        line = self.repo.get_cart_item(cart.id, cart_item_id)
        if not line:
            raise NotFoundError("That item is not in your cart.", cart_item_id=cart_item_id)

        if quantity > line.quantity:
            available = self.ledger.available(line.item_id, line.variant_id, excluding_buyer=user_id, now=now)
            if available < quantity:
                raise InsufficientStockError(line.item_id, line.variant_id, quantity, available)

        line.quantity = quantity
        self.repo.add_cart_item(line)
        self._bump(cart, now)
        return self._to_dict(cart)

    @action("cart.remove_item")
    def remove_item(self, user_id: int, cart_item_id: int) -> dict[str, Any]:
        return self._remove(user_id, cart_item_id)

    def _remove(self, user_id: int, cart_item_id: int) -> dict[str, Any]:
        now = utcnow()
        cart = self._require_cart(user_id)
        if self.repo.delete_cart_item(cart.id, cart_item_id) == 0:
            raise NotFoundError("That item is not in your cart.", cart_item_id=cart_item_id)

        changes = {}
        if not self.repo.get_cart_items(cart.id):
            changes["seller_id"] = None

        logger.info(f"Removed line {cart_item_id} from cart {cart.id}")
        self._bump(cart, now, **changes)
        return self._to_dict(cart)

    @action("cart.clear")
    def clear_cart(self, user_id: int) -> dict[str, Any]:
        now = utcnow()
        cart = self._require_cart(user_id)
        removed = self.repo.delete_all_items(cart.id)
        self._bump(cart, now, seller_id=None)
        logger.info(f"Cleared {removed} lines from cart {cart.id}")
        return self._to_dict(cart)
