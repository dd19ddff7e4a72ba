from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint, UniqueConstraint

from marketplace.data.database import Base


class StockLevelModel(Base):
    """Committed stock per (item, variant)."""

    __tablename__ = "stock_levels"
    __table_args__ = (
        UniqueConstraint("item_id", "variant_id", name="u_stock_item_variant"),
        CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, nullable=False, index=True)
    variant_id = Column(Integer, nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)


class StockReservationModel(Base):
    """Soft lock on stock, tied to one draft / gateway order."""

    __tablename__ = "stock_reservations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
    )

    id = Column(Integer, primary_key=True)
    buyer_id = Column(Integer, nullable=False, index=True)
    draft_id = Column(Integer, nullable=True, index=True)
    gateway_order_id = Column(String, nullable=True, index=True)
    item_id = Column(Integer, nullable=False, index=True)
    variant_id = Column(Integer, nullable=True)
    quantity = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
