from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, JSON, Float, Boolean

from marketplace.data.database import Base


class DraftOrderModel(Base):
    __tablename__ = "draft_orders"

    id = Column(Integer, primary_key=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(Integer, nullable=False)
    address_id = Column(Integer, nullable=False)

    # frozen cart lines: item_id, variant_id, quantity, personalization, selected_addons
    items = Column(JSON, nullable=False)
    # pricing breakdown at the moment the gateway order was opened
    pricing = Column(JSON, nullable=False)
    coupon_code = Column(String, nullable=True)
    distance_km = Column(Float, nullable=True)

    gateway_order_id = Column(String, nullable=True, unique=True)
    # set when a verified payment could not be turned into an order
    gateway_payment_id = Column(String, nullable=True)
    # true while the sweep is refunding that payment, the draft can no longer become an order
    refund_claimed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
