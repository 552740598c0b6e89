"""
Visit Lifecycle Workers — daily per-tenant scheduling ticks.

Schedule (fanned out by workers.scheduler.dispatch_active_tenants):
  00:15 process_expired_contracts  close contracts past their end date
  00:30 mark_missed_visits         sweep stale open visits to 'missed'
  01:00 generate_visits            top up visits for active contracts
Queue: scheduling

Every task accepts an optional ``as_of`` ISO datetime so a tick can be
replayed for a past day.
"""

import asyncio
import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workers.celery_app import celery_app

logger = structlog.get_logger()


def _clock_for(as_of: str | None):
    from core.clock import FixedClock, system_clock

    if as_of is None:
        return system_clock
    return FixedClock(datetime.fromisoformat(as_of))


async def _run_for_tenant(tenant_id: str, as_of: str | None, operation) -> dict:
    from core.config import get_settings
    from db.session import build_engine

    settings = get_settings()
    engine = build_engine(settings.database_url)
    try:
        async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with async_session() as db:
            return await operation(db, uuid.UUID(tenant_id), clock=_clock_for(as_of))
    finally:
        await engine.dispose()


@celery_app.task(
    name="workers.visits.generate_visits",
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    acks_late=True,
)
def generate_visits(self, tenant_id: str, as_of: str | None = None):
    """Daily job: create missing scheduled visits for the tenant's active contracts."""
    from maintenance.scheduling import generate_visits_for_active_contracts

    run_id = self.request.id or "manual"
    logger.info("visits_worker.generate_started", tenant_id=tenant_id, run_id=run_id)

    try:
        result = asyncio.run(_run_for_tenant(tenant_id, as_of, generate_visits_for_active_contracts))
    except Exception as exc:
        logger.error("visits_worker.generate_failed", tenant_id=tenant_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    summary = {
        "status": "success",
        "tenant_id": tenant_id,
        **result,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("visits_worker.generate_completed", **summary)
    return summary


@celery_app.task(
    name="workers.visits.mark_missed_visits",
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    acks_late=True,
)
def mark_missed_visits(self, tenant_id: str, as_of: str | None = None):
    """Daily job: open visits past the grace period become 'missed'."""
    from maintenance.scheduling import mark_overdue_visits_missed

    try:
        missed = asyncio.run(_run_for_tenant(tenant_id, as_of, mark_overdue_visits_missed))
    except Exception as exc:
        logger.error("visits_worker.mark_missed_failed", tenant_id=tenant_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    summary = {
        "status": "success",
        "tenant_id": tenant_id,
        "missed_count": missed,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("visits_worker.mark_missed_completed", **summary)
    return summary


@celery_app.task(
    name="workers.visits.process_expired_contracts",
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    acks_late=True,
)
def process_expired_contracts(self, tenant_id: str, as_of: str | None = None):
    from maintenance.scheduling import process_expired_contracts as close_expired

    try:
        result = asyncio.run(_run_for_tenant(tenant_id, as_of, close_expired))
    except Exception as exc:
        logger.error("visits_worker.expire_failed", tenant_id=tenant_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    summary = {
        "status": "success",
        "tenant_id": tenant_id,
        **result,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("visits_worker.expire_completed", **summary)
    return summary
