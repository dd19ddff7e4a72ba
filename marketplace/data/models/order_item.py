from sqlalchemy import Column, Integer, ForeignKey, String, Numeric, Boolean, JSON
from sqlalchemy.orm import relationship

from marketplace.data.database import Base


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    item_id = Column(Integer, nullable=False)
    variant_id = Column(Integer, nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)

    requires_personalization = Column(Boolean, nullable=False, default=False)
    personalization = Column(JSON, nullable=True)
    personalization_details = Column(JSON, nullable=True)
    selected_addons = Column(JSON, nullable=False, default=list)

    status = Column(String, nullable=False)

    order = relationship("OrderModel", back_populates="items")
