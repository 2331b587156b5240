"""
Celery application configuration
"""

import os
from celery import Celery
from competition_core.core.config import settings

# Use REDIS_URL as fallback for Celery broker
broker_url = os.environ.get('CELERY_BROKER_URL', os.environ.get('REDIS_URL', settings.celery_broker_url))
backend_url = os.environ.get('CELERY_RESULT_BACKEND', os.environ.get('REDIS_URL', settings.celery_result_backend))

celery = Celery(
    "competition_core",
    broker=broker_url,
    backend=backend_url,
    include=["competition_core.tasks.rounds"]
)

# Round windows are stored in UTC, so the scheduler runs in UTC too
celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    result_expires=3600,
    worker_concurrency=int(os.getenv("CELERY_WORKER_CONCURRENCY", 4)),
    task_routes={
        "competition_core.tasks.rounds.fix_competition_entries": {"queue": "reconciliation"},
    },
    task_default_queue="default",
)

if settings.app_env == "testing":
    celery.conf.task_always_eager = True
    celery.conf.task_eager_propagates = True

if __name__ == "__main__":
    celery.start()
