# marketplace/api/routers/orders.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.api.deps import get_gateway, get_notifier
from marketplace.api.errors import unwrap
from marketplace.data.database import get_db
from marketplace.domain.schemas import (
    ApprovePreviewIn,
    DetailsIn,
    HistoryEntryOut,
    OrderOut,
    ReasonIn,
    RevisionIn,
)
from marketplace.services.order_service import OrderService
from marketplace.services.refund_service import RefundService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session = Depends(get_db), gateway=Depends(get_gateway), notifier=Depends(get_notifier)):
    return OrderService(db, notifier, RefundService(db, gateway))


#query
@router.get("/", response_model=List[OrderOut])
def list_orders(user_id: int = Query(...), svc: OrderService = Depends(get_service)):
    return svc.list_buyer_orders(user_id)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, user_id: int = Query(...), svc: OrderService = Depends(get_service)):
    return svc.get_order(order_id, user_id)


@router.get("/{order_id}/history", response_model=List[HistoryEntryOut])
def get_history(order_id: int, user_id: int = Query(...), svc: OrderService = Depends(get_service)):
    """Buyer-facing timeline, straight from the append-only history."""
    return svc.get_history(order_id, user_id)


#buyer commands
@router.post("/{order_id}/details", response_model=OrderOut)
def submit_details(
    order_id: int,
    payload: DetailsIn,
    user_id: int = Query(...),
    svc: OrderService = Depends(get_service),
):
    return unwrap(svc.submit_details(buyer_id=user_id, order_id=order_id, details=payload.details))


@router.post("/{order_id}/preview/approve", response_model=OrderOut)
def approve_preview(
    order_id: int,
    payload: ApprovePreviewIn,
    user_id: int = Query(...),
    svc: OrderService = Depends(get_service),
):
    return unwrap(svc.approve_preview(buyer_id=user_id, order_id=order_id, preview_id=payload.preview_id))


@router.post("/{order_id}/preview/revision", response_model=OrderOut)
def request_revision(
    order_id: int,
    payload: RevisionIn,
    user_id: int = Query(...),
    svc: OrderService = Depends(get_service),
):
    return unwrap(
        svc.request_revision(
            buyer_id=user_id,
            order_id=order_id,
            feedback=payload.feedback,
            preview_id=payload.preview_id,
        )
    )


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    payload: ReasonIn,
    user_id: int = Query(...),
    svc: OrderService = Depends(get_service),
):
    # buyer before acceptance, seller any time before dispatch
    return unwrap(svc.cancel(user_id=user_id, order_id=order_id, reason=payload.reason))
