# marketplace/tasks/deadlines.py
from uuid import uuid4

from marketplace.celery_worker import celery_app
from marketplace.data.database import SessionLocal
from marketplace.services.deadline_enforcer import DeadlineEnforcer
from marketplace.services.lock_service import LockService
from marketplace.services.notification_service import ChangeNotifier
from marketplace.services.payment_gateway import build_gateway
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import SWEEP_LOCK_TTL_SECONDS

logger = get_logger(__name__)

SWEEP_LOCK = "deadline-sweep"


def run_sweep(lock=None, db=None, gateway=None, notifier=None) -> dict:
    """
    One pass of the deadline sweep, guarded by a redis lock so overlapping
    beats (or the cron endpoint) do not run it twice at the same time.
    """
    lock = lock or LockService()
    owner = f"sweep-{uuid4().hex[:12]}"

    if not lock.acquire(SWEEP_LOCK, owner, SWEEP_LOCK_TTL_SECONDS):
        logger.info("Deadline sweep already running elsewhere, skipping")
        return {"skipped": True}

    session = db or SessionLocal()
    try:
        enforcer = DeadlineEnforcer(session, gateway or build_gateway(), notifier or ChangeNotifier())
        counts = enforcer.run()
    finally:
        if db is None:
            session.close()
        lock.release(SWEEP_LOCK, owner)

    return {"skipped": False, **counts}


@celery_app.task(name="marketplace.tasks.deadlines.enforce_deadlines_task")
def enforce_deadlines_task():
    logger.info("Enforce deadlines task started")
    return run_sweep()
