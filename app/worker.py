"""Celery worker configuration.

This module sets up Celery for the scheduled payout sweep.
"""

import logging

from celery import Celery
from celery.schedules import crontab

from app.config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Create Celery app
celery_app = Celery(
    "payout_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=1800,  # 30 minutes max, one provider call per booking
    task_soft_time_limit=1500,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=1,

    # Result backend settings
    result_expires=86400,

    # Retry settings
    task_default_retry_delay=300,
    task_max_retries=3,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Auto-confirm overdue bookings, then release due holds
        "run-payout-sweep": {
            "task": "app.tasks.run_payout_sweep",
            "schedule": crontab(hour=settings.payout_sweep_hour, minute=0),
        },
    },
)


if __name__ == "__main__":
    celery_app.start()
