# marketplace/repos/draft_repo.py
from datetime import datetime

from sqlalchemy import select, update, delete
from sqlalchemy.orm import Session

from marketplace.data.models.draft_order import DraftOrderModel


class DraftRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_draft(self, draft: DraftOrderModel) -> DraftOrderModel:
        self.db.add(draft)
        self.db.flush()
        return draft

    def get_draft(self, draft_id: int) -> DraftOrderModel | None:
        return self.db.execute(
            select(DraftOrderModel).where(DraftOrderModel.id == draft_id)
        ).scalar_one_or_none()

    def get_by_gateway_order(self, gateway_order_id: str) -> DraftOrderModel | None:
        return self.db.execute(
            select(DraftOrderModel).where(DraftOrderModel.gateway_order_id == gateway_order_id)
        ).scalar_one_or_none()

    def attach_gateway_order(self, draft_id: int, gateway_order_id: str) -> int:
        return self.db.execute(
            update(DraftOrderModel)
            .where(DraftOrderModel.id == draft_id)
            .values(gateway_order_id=gateway_order_id)
            .execution_options(synchronize_session="fetch")
        ).rowcount

    def delete_draft(self, draft_id: int) -> int:
        return self.db.execute(delete(DraftOrderModel).where(DraftOrderModel.id == draft_id)).rowcount

    def consume(self, draft_id: int) -> int:
        """Deletes the draft for order creation; 0 rows means it is gone or its payment is being refunded."""
        return self.db.execute(
            delete(DraftOrderModel).where(
                DraftOrderModel.id == draft_id,
                DraftOrderModel.refund_claimed.is_(False),
            )
        ).rowcount

    def record_payment(self, draft_id: int, payment_id: str) -> int:
        return self.db.execute(
            update(DraftOrderModel)
            .where(DraftOrderModel.id == draft_id)
            .values(gateway_payment_id=payment_id)
            .execution_options(synchronize_session="fetch")
        ).rowcount

    def list_expired(self, now: datetime) -> list[DraftOrderModel]:
        return list(
            self.db.execute(
                select(DraftOrderModel).where(DraftOrderModel.expires_at <= now).order_by(DraftOrderModel.id)
            ).scalars()
        )

    def claim_payment(self, draft_id: int, payment_id: str) -> int:
        """Marks the payment as being refunded; 0 rows means a sweep or an order creation got there first."""
        return self.db.execute(
            update(DraftOrderModel)
            .where(
                DraftOrderModel.id == draft_id,
                DraftOrderModel.gateway_payment_id == payment_id,
                DraftOrderModel.refund_claimed.is_(False),
            )
            .values(refund_claimed=True)
            .execution_options(synchronize_session=False)
        ).rowcount

    def release_payment(self, draft_id: int) -> int:
        return self.db.execute(
            update(DraftOrderModel)
            .where(DraftOrderModel.id == draft_id)
            .values(refund_claimed=False)
            .execution_options(synchronize_session=False)
        ).rowcount
