# marketplace/data/seed.py
from datetime import timedelta
from decimal import Decimal

from marketplace.data.database import SessionLocal
from marketplace.data.models import CouponModel, StockLevelModel, UserModel
from marketplace.utils.clock import utcnow
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


def seed(session_factory=SessionLocal) -> bool:
    """Demo data matching the dev catalog mock. Only seeds an empty database."""
    db = session_factory()
    try:
        if db.query(UserModel).first():
            return False

        db.add_all(
            [
                UserModel(id=1, name="Demo Buyer", role="buyer", wallet_balance=Decimal("100.00")),
                UserModel(id=2, name="Demo Seller", role="seller", latitude=12.9352, longitude=77.6245),
                StockLevelModel(item_id=1, variant_id=None, quantity=25),
                StockLevelModel(item_id=2, variant_id=1, quantity=5),
                StockLevelModel(item_id=2, variant_id=2, quantity=3),
                CouponModel(
                    code="WELCOME10",
                    kind="percent",
                    value=Decimal("10"),
                    min_order_value=Decimal("300"),
                    max_discount=Decimal("100"),
                    is_active=True,
                    expires_at=utcnow() + timedelta(days=365),
                ),
            ]
        )
        db.commit()
        logger.info("Seeded demo users, stock and coupon")
        return True
    finally:
        db.close()
