from sqlalchemy import Column, Integer, ForeignKey, String, DateTime
from sqlalchemy.orm import relationship

from marketplace.data.database import Base


class PreviewSubmissionModel(Base):
    __tablename__ = "preview_submissions"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False)

    preview_url = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending, approved, change_requested
    seller_notes = Column(String, nullable=True)
    buyer_feedback = Column(String, nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=False)
    decided_at = Column(DateTime(timezone=True), nullable=True)

    order = relationship("OrderModel", back_populates="previews")
