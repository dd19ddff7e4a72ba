from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Index, text
from sqlalchemy.orm import relationship

from marketplace.data.database import Base


class CartModel(Base):
    __tablename__ = "carts"
    __table_args__ = (
        # one ACTIVE cart per buyer, a second concurrent insert fails instead of forking the cart
        Index(
            "uq_carts_active_user",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(Integer, nullable=True)

    status = Column(String, nullable=False, default="ACTIVE")  # ACTIVE, CHECKED_OUT
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    items = relationship(
        "CartItemModel",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItemModel.id",
    )
