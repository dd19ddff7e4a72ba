# marketplace/repos/stock_repo.py
from datetime import datetime

from sqlalchemy import select, update, delete, func
from sqlalchemy.orm import Session

from marketplace.data.models.stock import StockLevelModel, StockReservationModel


def _variant_is(column, variant_id: int | None):
    return column.is_(None) if variant_id is None else column == variant_id


class StockRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_level(self, item_id: int, variant_id: int | None) -> StockLevelModel | None:
        return self.db.execute(
            select(StockLevelModel).where(
                StockLevelModel.item_id == item_id,
                _variant_is(StockLevelModel.variant_id, variant_id),
            )
        ).scalar_one_or_none()

    def read_level(self, item_id: int, variant_id: int | None) -> tuple[int, int, int] | None:
        """(id, quantity, version) straight from the table, bypassing the identity map."""
        row = self.db.execute(
            select(StockLevelModel.id, StockLevelModel.quantity, StockLevelModel.version).where(
                StockLevelModel.item_id == item_id,
                _variant_is(StockLevelModel.variant_id, variant_id),
            )
        ).first()
        return tuple(row) if row else None

    def live_reserved(
        self,
        item_id: int,
        variant_id: int | None,
        now: datetime,
        excluding_buyer: int | None = None,
    ) -> int:
        query = select(func.coalesce(func.sum(StockReservationModel.quantity), 0)).where(
            StockReservationModel.item_id == item_id,
            _variant_is(StockReservationModel.variant_id, variant_id),
            StockReservationModel.expires_at > now,
        )
        if excluding_buyer is not None:
            query = query.where(StockReservationModel.buyer_id != excluding_buyer)
        return int(self.db.execute(query).scalar_one())

    def bump_version(self, level_id: int, old_version: int) -> int:
        """Claims the row for this transaction; 0 rows means someone else got there first."""
        return self.db.execute(
            update(StockLevelModel)
            .where(StockLevelModel.id == level_id, StockLevelModel.version == old_version)
            .values(version=old_version + 1)
            .execution_options(synchronize_session=False)
        ).rowcount

    def decrement(self, level_id: int, old_version: int, quantity: int) -> int:
        return self.db.execute(
            update(StockLevelModel)
            .where(
                StockLevelModel.id == level_id,
                StockLevelModel.version == old_version,
                StockLevelModel.quantity >= quantity,
            )
            .values(
                quantity=StockLevelModel.quantity - quantity,
                version=old_version + 1,
            )
            .execution_options(synchronize_session=False)
        ).rowcount

    def add_reservation(self, reservation: StockReservationModel) -> None:
        self.db.add(reservation)

    def delete_buyer_reservations(self, buyer_id: int, item_id: int, variant_id: int | None) -> int:
        return self.db.execute(
            delete(StockReservationModel).where(
                StockReservationModel.buyer_id == buyer_id,
                StockReservationModel.item_id == item_id,
                _variant_is(StockReservationModel.variant_id, variant_id),
            )
        ).rowcount

    def attach_gateway_order(self, draft_id: int, gateway_order_id: str) -> int:
        return self.db.execute(
            update(StockReservationModel)
            .where(StockReservationModel.draft_id == draft_id)
            .values(gateway_order_id=gateway_order_id)
            .execution_options(synchronize_session=False)
        ).rowcount

    def delete_for_gateway_order(self, gateway_order_id: str) -> int:
        return self.db.execute(
            delete(StockReservationModel).where(StockReservationModel.gateway_order_id == gateway_order_id)
        ).rowcount

    def delete_for_draft(self, draft_id: int) -> int:
        return self.db.execute(
            delete(StockReservationModel).where(StockReservationModel.draft_id == draft_id)
        ).rowcount

    def delete_expired(self, now: datetime) -> int:
        return self.db.execute(
            delete(StockReservationModel).where(StockReservationModel.expires_at <= now)
        ).rowcount
