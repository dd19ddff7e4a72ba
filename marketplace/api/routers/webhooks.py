# marketplace/api/routers/webhooks.py
import json

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from marketplace.api.deps import get_catalog, get_gateway, get_notifier
from marketplace.api.errors import unwrap
from marketplace.data.database import get_db
from marketplace.services.order_creation import OrderCreationService
from marketplace.services.payment_gateway import parse_webhook
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payment")
async def payment_webhook(
    request: Request,
    x_razorpay_signature: str = Header(""),
    db: Session = Depends(get_db),
    catalog=Depends(get_catalog),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    # the signature covers the exact bytes sent, so read the body raw
    body = await request.body()
    if not gateway.verify_webhook(body, x_razorpay_signature):
        logger.error("Rejected payment webhook with an invalid signature")
        raise HTTPException(status_code=401, detail="invalid signature")

    try:
        event = parse_webhook(json.loads(body))
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning(f"Unparseable payment webhook: {e}")
        raise HTTPException(status_code=400, detail="malformed payload")

    svc = OrderCreationService(db=db, gateway=gateway, catalog=catalog, notifier=notifier)
    return unwrap(await run_in_threadpool(svc.handle_webhook, **event))
