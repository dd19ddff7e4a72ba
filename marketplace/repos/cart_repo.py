# marketplace/repos/cart_repo.py
from sqlalchemy import select, update, delete
from sqlalchemy.orm import Session

from marketplace.data.models.cart import CartModel
from marketplace.data.models.cart_item import CartItemModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_cart(self, cart_id: int) -> CartModel | None:
        return self.db.get(CartModel, cart_id)

    def get_active_cart_by_user(self, user_id: int) -> CartModel | None:
        return self.db.execute(
            select(CartModel).where(CartModel.user_id == user_id, CartModel.status == "ACTIVE")
        ).scalar_one_or_none()

    def create_cart(self, cart: CartModel) -> CartModel:
        self.db.add(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def get_cart_items(self, cart_id: int) -> list[CartItemModel]:
        return list(
            self.db.execute(
                select(CartItemModel).where(CartItemModel.cart_id == cart_id).order_by(CartItemModel.id)
            ).scalars()
        )

    def get_cart_item(self, cart_id: int, cart_item_id: int) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel).where(CartItemModel.cart_id == cart_id, CartItemModel.id == cart_item_id)
        ).scalar_one_or_none()

    def get_cart_item_by_key(self, cart_id: int, line_key: str) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel).where(CartItemModel.cart_id == cart_id, CartItemModel.line_key == line_key)
        ).scalar_one_or_none()

    def add_cart_item(self, item: CartItemModel) -> None:
        self.db.add(item)
        self.db.flush()

    def delete_cart_item(self, cart_id: int, cart_item_id: int) -> int:
        return self.db.execute(
            delete(CartItemModel).where(CartItemModel.cart_id == cart_id, CartItemModel.id == cart_item_id)
        ).rowcount

    def delete_all_items(self, cart_id: int) -> int:
        return self.db.execute(delete(CartItemModel).where(CartItemModel.cart_id == cart_id)).rowcount

    def update_cart_version(self, cart_id: int, old_version: int, new_data: dict) -> int:
        #update carts set ... where id = :id and version = :old
        return self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id, CartModel.version == old_version)
            .values(**new_data)
            .execution_options(synchronize_session="fetch")
        ).rowcount

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def checkout_cart(self, user_id: int, now) -> int:
        """Empties the buyer's active cart inside the caller's transaction."""
        cart = self.get_active_cart_by_user(user_id)
        if not cart:
            return 0
        removed = self.delete_all_items(cart.id)
        self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart.id)
            .values(version=CartModel.version + 1, seller_id=None, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return removed
