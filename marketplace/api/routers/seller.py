# marketplace/api/routers/seller.py
from typing import List

from fastapi import APIRouter, Depends, Query

from marketplace.api.errors import unwrap
from marketplace.api.routers.orders import get_service
from marketplace.domain.order_status import OrderStatus
from marketplace.domain.schemas import OrderOut, PreviewIn, ReasonIn
from marketplace.services.order_service import OrderService

router = APIRouter(prefix="/seller/orders", tags=["seller"])


@router.get("/", response_model=List[OrderOut])
def seller_queue(
    user_id: int = Query(...),
    status: List[OrderStatus] = Query([]),
    svc: OrderService = Depends(get_service),
):
    return svc.seller_queue(user_id, [s.value for s in status])


@router.post("/{order_id}/accept", response_model=OrderOut)
def accept(order_id: int, user_id: int = Query(...), svc: OrderService = Depends(get_service)):
    return unwrap(svc.accept(seller_id=user_id, order_id=order_id))


@router.post("/{order_id}/previews", response_model=OrderOut, status_code=201)
def upload_preview(
    order_id: int,
    payload: PreviewIn,
    user_id: int = Query(...),
    svc: OrderService = Depends(get_service),
):
    return unwrap(
        svc.upload_preview(
            seller_id=user_id,
            order_id=order_id,
            order_item_id=payload.order_item_id,
            preview_url=payload.preview_url,
            seller_notes=payload.seller_notes,
        )
    )


@router.post("/{order_id}/start-production", response_model=OrderOut)
def start_production(order_id: int, user_id: int = Query(...), svc: OrderService = Depends(get_service)):
    return unwrap(svc.start_production(seller_id=user_id, order_id=order_id))


@router.post("/{order_id}/pack", response_model=OrderOut)
def mark_packed(order_id: int, user_id: int = Query(...), svc: OrderService = Depends(get_service)):
    return unwrap(svc.mark_packed(seller_id=user_id, order_id=order_id))


@router.post("/{order_id}/dispatch", response_model=OrderOut)
def dispatch(order_id: int, user_id: int = Query(...), svc: OrderService = Depends(get_service)):
    return unwrap(svc.dispatch(seller_id=user_id, order_id=order_id))


@router.post("/{order_id}/deliver", response_model=OrderOut)
def deliver(order_id: int, user_id: int = Query(...), svc: OrderService = Depends(get_service)):
    return unwrap(svc.deliver(seller_id=user_id, order_id=order_id))


@router.post("/{order_id}/refund", response_model=OrderOut)
def refund(
    order_id: int,
    payload: ReasonIn,
    user_id: int = Query(...),
    svc: OrderService = Depends(get_service),
):
    return unwrap(svc.refund(seller_id=user_id, order_id=order_id, reason=payload.reason))
