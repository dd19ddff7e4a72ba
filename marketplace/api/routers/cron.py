# marketplace/api/routers/cron.py
from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from marketplace.api.deps import get_gateway, get_lock, get_notifier
from marketplace.data.database import get_db
from marketplace.tasks.deadlines import run_sweep
from marketplace.utils.settings import CRON_SECRET

router = APIRouter(prefix="/cron", tags=["cron"])


@router.post("/enforce-deadlines")
def enforce_deadlines(
    authorization: str = Header(""),
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
    lock=Depends(get_lock),
):
    """Runs the deadline sweep now and returns how many orders each rule touched."""
    if CRON_SECRET and authorization != f"Bearer {CRON_SECRET}":
        raise HTTPException(status_code=401, detail="unauthorized")
    return run_sweep(lock=lock, db=db, gateway=gateway, notifier=notifier)
