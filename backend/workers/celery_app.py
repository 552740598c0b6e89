"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "maintainops",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.visits.*": {"queue": "scheduling"},
        "workers.scheduler.*": {"queue": "scheduling"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # These jobs fan out across tenants via workers.scheduler.dispatch_active_tenants.
    beat_schedule={
        # ── Visit Lifecycle ────────────────────────────────────────
        "process-expired-contracts-daily": {
            "task": "workers.scheduler.dispatch_active_tenants",
            "schedule": crontab(hour=0, minute=15),
            "kwargs": {"task_name": "workers.visits.process_expired_contracts"},
            "options": {"queue": "scheduling"},
        },
        "mark-missed-visits-daily": {
            "task": "workers.scheduler.dispatch_active_tenants",
            "schedule": crontab(hour=0, minute=30),
            "kwargs": {
                "task_name": "workers.visits.mark_missed_visits",
                # Past open visits of paused or expired contracts still need sweeping.
                "statuses": ["active", "paused", "completed"],
            },
            "options": {"queue": "scheduling"},
        },
        "generate-visits-daily": {
            "task": "workers.scheduler.dispatch_active_tenants",
            "schedule": crontab(hour=1, minute=0),  # After expired contracts are closed
            "kwargs": {"task_name": "workers.visits.generate_visits"},
            "options": {"queue": "scheduling"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
