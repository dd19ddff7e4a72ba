from sqlalchemy import Column, Integer, ForeignKey, JSON, String
from sqlalchemy.orm import relationship

from marketplace.data.database import Base


class CartItemModel(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Integer, nullable=False)
    variant_id = Column(Integer, nullable=True)

    quantity = Column(Integer, nullable=False)
    # {"enabled": bool, "option_id": str | None}
    personalization = Column(JSON, nullable=True)
    # [{"id": int, "name": str}]
    selected_addons = Column(JSON, nullable=False, default=list)
    # merge key for identical lines: item/variant/personalization option/addon set
    line_key = Column(String, nullable=False)

    cart = relationship("CartModel", back_populates="items")
