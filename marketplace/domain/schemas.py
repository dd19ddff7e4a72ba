# marketplace/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field

from marketplace.domain.order_status import OrderStatus


#cart
class PersonalizationIn(BaseModel):
    enabled: bool = False
    option_id: str | None = None


class AddonIn(BaseModel):
    id: int = Field(..., gt=0)
    name: str | None = None


class CartItemIn(BaseModel):
    """Line to add to the buyer's cart."""

    item_id: int = Field(..., gt=0, description="Catalog item id")
    quantity: int = Field(1, gt=0, description="Units to add")
    variant_id: int | None = Field(None, gt=0)
    personalization: PersonalizationIn | None = None
    selected_addons: List[AddonIn] = []


class QuantityIn(BaseModel):
    quantity: int = Field(..., ge=0, description="0 removes the line")


class CartLineOut(BaseModel):
    id: int
    item_id: int
    variant_id: int | None = None
    quantity: int
    personalization: dict | None = None
    selected_addons: List[dict] = []


class CartOut(BaseModel):
    cart_id: int | None = None
    user_id: int
    seller_id: int | None = None
    status: str
    version: int
    items: List[CartLineOut]
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


#checkout
class CheckoutIn(BaseModel):
    address_id: int = Field(..., gt=0)
    client_amount: Decimal | None = Field(None, ge=0, description="Total the client displayed, sanity check only")
    coupon_code: str | None = None
    use_wallet: bool = False


class CheckoutOut(BaseModel):
    draft_id: int
    gateway_order_id: str
    amount: int = Field(..., description="Amount in minor units")
    currency: str
    pricing: dict[str, Any]
    expires_at: datetime


class VerifyPaymentIn(BaseModel):
    gateway_order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    draft_id: int | None = None


class OrderCreatedOut(BaseModel):
    order_id: int
    order_number: str
    status: str
    created: bool


#orders
class DetailsIn(BaseModel):
    details: dict[str, Any]


class PreviewIn(BaseModel):
    order_item_id: int = Field(..., gt=0)
    preview_url: str = Field(..., min_length=1)
    seller_notes: str | None = None


class ApprovePreviewIn(BaseModel):
    preview_id: int | None = None


class RevisionIn(BaseModel):
    feedback: str = Field(..., min_length=1, max_length=2000)
    preview_id: int | None = None


class ReasonIn(BaseModel):
    reason: str = Field("", max_length=500)


class OrderItemOut(BaseModel):
    id: int
    item_id: int
    variant_id: int | None = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    requires_personalization: bool
    personalization_details: dict | None = None
    status: str


class PreviewOut(BaseModel):
    id: int
    order_item_id: int
    preview_url: str
    status: str
    seller_notes: str | None = None
    buyer_feedback: str | None = None
    submitted_at: datetime


class PricingOut(BaseModel):
    subtotal: Decimal
    personalization_charges: Decimal
    delivery_fee: Decimal
    platform_fee: Decimal
    gst: Decimal
    discount: Decimal
    wallet_deduction: Decimal
    total: Decimal


class OrderOut(BaseModel):
    id: int
    order_number: str
    buyer_id: int
    seller_id: int
    status: OrderStatus
    payment_status: str
    version: int
    pricing: PricingOut
    requires_personalization: bool
    personalization_input: dict | None = None
    change_request_count: int
    max_change_requests: int
    accept_deadline: datetime | None = None
    details_deadline: datetime | None = None
    preview_deadline: datetime | None = None
    cancellation_reason: str | None = None
    items: List[OrderItemOut]
    previews: List[PreviewOut]
    created_at: datetime
    updated_at: datetime
    refund_succeeded: bool | None = None


class HistoryEntryOut(BaseModel):
    event_type: str
    title: str
    description: str
    from_status: str | None = None
    to_status: str
    actor: str
    metadata: dict[str, Any] = {}
    created_at: datetime
