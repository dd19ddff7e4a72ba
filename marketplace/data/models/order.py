from datetime import datetime, timezone

from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric, Boolean, JSON
from sqlalchemy.orm import relationship

from marketplace.data.database import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String, nullable=False, unique=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(Integer, nullable=False, index=True)
    address_id = Column(Integer, nullable=False)

    status = Column(String, nullable=False, default="PLACED", index=True)
    version = Column(Integer, nullable=False, default=1)
    payment_status = Column(String, nullable=False, default="paid")

    # pricing breakdown
    subtotal = Column(Numeric(10, 2), nullable=False)
    personalization_charges = Column(Numeric(10, 2), nullable=False, default=0)
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=0)
    platform_fee = Column(Numeric(10, 2), nullable=False, default=0)
    gst = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    wallet_deduction = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)
    coupon_code = Column(String, nullable=True)
    refunded_amount = Column(Numeric(10, 2), nullable=True)

    # personalization
    requires_personalization = Column(Boolean, nullable=False, default=False)
    personalization_input = Column(JSON(none_as_null=True), nullable=True)
    change_request_count = Column(Integer, nullable=False, default=0)
    max_change_requests = Column(Integer, nullable=False, default=2)

    # deadlines
    accept_deadline = Column(DateTime(timezone=True), nullable=True, index=True)
    details_deadline = Column(DateTime(timezone=True), nullable=True)
    preview_deadline = Column(DateTime(timezone=True), nullable=True)

    cancellation_reason = Column(String, nullable=True)
    cancelled_by = Column(String, nullable=True)

    # unique: the only arbiter between the verify path and the webhook path
    gateway_order_id = Column(String, nullable=False, unique=True)
    gateway_payment_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    items = relationship("OrderItemModel", back_populates="order", order_by="OrderItemModel.id")
    previews = relationship("PreviewSubmissionModel", back_populates="order", order_by="PreviewSubmissionModel.id")
    history = relationship("OrderStatusHistoryModel", back_populates="order", order_by="OrderStatusHistoryModel.id")
