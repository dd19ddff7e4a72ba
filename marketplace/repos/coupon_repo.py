# marketplace/repos/coupon_repo.py
from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.data.models.coupon import CouponModel


class CouponRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, code: str) -> CouponModel | None:
        return self.db.execute(
            select(CouponModel).where(CouponModel.code == code.strip().upper())
        ).scalar_one_or_none()
