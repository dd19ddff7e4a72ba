# marketplace/repos/order_repo.py
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from marketplace.data.models.order import OrderModel
from marketplace.data.models.order_item import OrderItemModel
from marketplace.data.models.preview_submission import PreviewSubmissionModel
from marketplace.data.models.order_status_history import OrderStatusHistoryModel
from marketplace.domain.order_status import OrderStatus, PaymentStatus, PreviewStatus


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    #write side
    def create_order(self, order: OrderModel) -> OrderModel:
        # flush only, the caller owns the transaction
        self.db.add(order)
        self.db.flush()
        return order

    def add_item(self, item: OrderItemModel) -> OrderItemModel:
        self.db.add(item)
        self.db.flush()
        return item

    def add_history(self, entry: OrderStatusHistoryModel) -> None:
        self.db.add(entry)

    def add_preview(self, preview: PreviewSubmissionModel) -> PreviewSubmissionModel:
        self.db.add(preview)
        self.db.flush()
        return preview

    def transition(self, order_id: int, from_status: str, old_version: int, new_data: dict) -> int:
        #update orders set ... where id = :id and status = :from and version = :old
        return self.db.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.status == from_status,
                OrderModel.version == old_version,
            )
            .values(version=old_version + 1, **new_data)
            .execution_options(synchronize_session="fetch")
        ).rowcount

    def claim_refund(self, order_id: int, from_statuses: tuple[str, ...]) -> int:
        return self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.payment_status.in_(from_statuses))
            .values(payment_status=PaymentStatus.REFUND_PENDING.value)
            .execution_options(synchronize_session="fetch")
        ).rowcount

    def set_payment_status(self, order_id: int, payment_status: str, **extra) -> int:
        return self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(payment_status=payment_status, **extra)
            .execution_options(synchronize_session="fetch")
        ).rowcount

    def update_items(self, order_id: int, new_data: dict, item_id: int | None = None, personalized_only: bool = False) -> int:
        query = update(OrderItemModel).where(OrderItemModel.order_id == order_id)
        if item_id is not None:
            query = query.where(OrderItemModel.id == item_id)
        if personalized_only:
            query = query.where(OrderItemModel.requires_personalization.is_(True))
        return self.db.execute(query.values(**new_data).execution_options(synchronize_session="fetch")).rowcount

    def update_preview(self, preview_id: int, from_status: str, new_data: dict) -> int:
        return self.db.execute(
            update(PreviewSubmissionModel)
            .where(PreviewSubmissionModel.id == preview_id, PreviewSubmissionModel.status == from_status)
            .values(**new_data)
            .execution_options(synchronize_session="fetch")
        ).rowcount

    #read side
    def get_order(self, order_id: int) -> OrderModel | None:
        return self.db.get(OrderModel, order_id)

    def fetch_fresh(self, order_id: int) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel).where(OrderModel.id == order_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_by_gateway_order_id(self, gateway_order_id: str) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel)
            .where(OrderModel.gateway_order_id == gateway_order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_item(self, order_id: int, order_item_id: int) -> OrderItemModel | None:
        return self.db.execute(
            select(OrderItemModel).where(OrderItemModel.order_id == order_id, OrderItemModel.id == order_item_id)
        ).scalar_one_or_none()

    def get_preview(self, order_id: int, preview_id: int) -> PreviewSubmissionModel | None:
        return self.db.execute(
            select(PreviewSubmissionModel).where(
                PreviewSubmissionModel.order_id == order_id,
                PreviewSubmissionModel.id == preview_id,
            )
        ).scalar_one_or_none()

    def latest_pending_preview(self, order_id: int) -> PreviewSubmissionModel | None:
        return self.db.execute(
            select(PreviewSubmissionModel)
            .where(
                PreviewSubmissionModel.order_id == order_id,
                PreviewSubmissionModel.status == PreviewStatus.PENDING.value,
            )
            .order_by(PreviewSubmissionModel.submitted_at.desc(), PreviewSubmissionModel.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_history(self, order_id: int) -> list[OrderStatusHistoryModel]:
        return list(
            self.db.execute(
                select(OrderStatusHistoryModel)
                .where(OrderStatusHistoryModel.order_id == order_id)
                .order_by(OrderStatusHistoryModel.id)
            ).scalars()
        )

    def list_for_buyer(self, buyer_id: int) -> list[OrderModel]:
        return list(
            self.db.execute(
                select(OrderModel).where(OrderModel.buyer_id == buyer_id).order_by(OrderModel.id.desc())
            ).scalars()
        )

    def list_for_seller(self, seller_id: int, statuses: list[str] | None = None) -> list[OrderModel]:
        query = select(OrderModel).where(OrderModel.seller_id == seller_id)
        if statuses:
            query = query.where(OrderModel.status.in_(statuses))
        return list(self.db.execute(query.order_by(OrderModel.id)).scalars())

    #deadline queries
    def due_for_acceptance(self, now: datetime) -> list[int]:
        return list(
            self.db.execute(
                select(OrderModel.id).where(
                    OrderModel.status == OrderStatus.PLACED.value,
                    OrderModel.accept_deadline < now,
                )
            ).scalars()
        )

    def due_for_details(self, now: datetime) -> list[int]:
        return list(
            self.db.execute(
                select(OrderModel.id).where(
                    OrderModel.status == OrderStatus.CONFIRMED.value,
                    OrderModel.requires_personalization.is_(True),
                    OrderModel.personalization_input.is_(None),
                    OrderModel.details_deadline < now,
                )
            ).scalars()
        )

    def due_for_preview_approval(self, now: datetime) -> list[int]:
        return list(
            self.db.execute(
                select(OrderModel.id).where(
                    OrderModel.status == OrderStatus.PREVIEW_READY.value,
                    OrderModel.preview_deadline < now,
                )
            ).scalars()
        )

    def refunds_to_retry(self) -> list[int]:
        return list(
            self.db.execute(
                select(OrderModel.id).where(
                    # a cancel and a seller refund both leave the money to the gateway call
                    OrderModel.status.in_((OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value)),
                    OrderModel.payment_status == PaymentStatus.REFUND_FAILED.value,
                )
            ).scalars()
        )
