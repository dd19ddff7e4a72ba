# marketplace/api/routers/checkout.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.api.deps import get_catalog, get_gateway, get_location, get_notifier
from marketplace.api.errors import unwrap
from marketplace.data.database import get_db
from marketplace.domain.schemas import CheckoutIn, CheckoutOut, OrderCreatedOut, VerifyPaymentIn
from marketplace.services.checkout_service import CheckoutService
from marketplace.services.order_creation import OrderCreationService

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/payment", response_model=CheckoutOut, status_code=201)
def open_payment(
    payload: CheckoutIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    catalog=Depends(get_catalog),
    location=Depends(get_location),
    gateway=Depends(get_gateway),
):
    """
    Prices the cart on the server, reserves stock and opens a gateway order
    for the server-computed amount.
    """
    svc = CheckoutService(db=db, catalog=catalog, location=location, gateway=gateway)
    return unwrap(
        svc.open_payment(
            buyer_id=user_id,
            address_id=payload.address_id,
            client_amount=payload.client_amount,
            coupon_code=payload.coupon_code,
            use_wallet=payload.use_wallet,
        )
    )


@router.post("/verify", response_model=OrderCreatedOut)
def verify_payment(
    payload: VerifyPaymentIn,
    db: Session = Depends(get_db),
    catalog=Depends(get_catalog),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    svc = OrderCreationService(db=db, gateway=gateway, catalog=catalog, notifier=notifier)
    return unwrap(
        svc.verify_payment(
            gateway_order_id=payload.gateway_order_id,
            payment_id=payload.payment_id,
            signature=payload.signature,
            draft_id=payload.draft_id,
        )
    )
