#import all models so SQLAlchemy registers them in Base.metadata

from marketplace.data.models.user import UserModel
from marketplace.data.models.cart import CartModel
from marketplace.data.models.cart_item import CartItemModel
from marketplace.data.models.coupon import CouponModel
from marketplace.data.models.stock import StockLevelModel, StockReservationModel
from marketplace.data.models.draft_order import DraftOrderModel
from marketplace.data.models.order import OrderModel
from marketplace.data.models.order_item import OrderItemModel
from marketplace.data.models.preview_submission import PreviewSubmissionModel
from marketplace.data.models.order_status_history import OrderStatusHistoryModel

__all__ = [
    "UserModel",
    "CartModel",
    "CartItemModel",
    "CouponModel",
    "StockLevelModel",
    "StockReservationModel",
    "DraftOrderModel",
    "OrderModel",
    "OrderItemModel",
    "PreviewSubmissionModel",
    "OrderStatusHistoryModel",
]
