# marketplace/celery_worker.py
from celery import Celery

from marketplace.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    SWEEP_INTERVAL_SECONDS,
)

celery_app = Celery(
    "marketplace",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks must be imported explicitly so the worker registers them
celery_app.conf.imports = (
    "marketplace.tasks.deadlines",
    "marketplace.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "enforce-deadlines-every-minute": {
        "task": "marketplace.tasks.deadlines.enforce_deadlines_task",
        "schedule": SWEEP_INTERVAL_SECONDS,
    },
}

celery_app.conf.timezone = "UTC"
