"""
Visit Execution — persist state-machine transitions driven by technicians.

The transition rules live in maintenance.state_machine; this module loads
the visit under a row lock, applies the planned change with the injected
clock and commits. Completion is always handed to the consumption
coordinator so it happens as one atomic unit with its parts usage.
"""

import uuid
from datetime import date

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import Clock, system_clock
from db.models import Visit
from maintenance.consumption import complete_visit_with_parts
from maintenance.errors import MaintenanceError
from maintenance.state_machine import apply_plan, current_stamps, plan_transition
from maintenance.visits import get_visit

logger = structlog.get_logger()


async def update_visit_status(
    db: AsyncSession,
    visit_id: uuid.UUID,
    target_status: str,
    *,
    clock: Clock = system_clock,
) -> Visit:
    """
    Move a visit to ``target_status``.

    Illegal pairs raise InvalidTransition with the visit untouched. Asking
    for the status the visit already has is a no-op. Timestamps are only
    written the first time a status is entered.
    """
    try:
        visit = await get_visit(db, visit_id, for_update=True)
        old_status = visit.status
        plan = plan_transition(old_status, target_status, current_stamps(visit))
        if plan.is_noop:
            await db.commit()
            return visit
        if target_status == "completed":
            await db.commit()
            return await complete_visit_with_parts(db, visit_id, [], clock=clock)

        apply_plan(visit, plan, clock.now())
        await db.commit()
    except MaintenanceError:
        await db.rollback()
        raise
    except Exception as exc:
        await db.rollback()
        logger.error("execution.status_update_failed", visit_id=str(visit_id), status=target_status, error=str(exc))
        raise

    logger.info(
        "execution.status_updated",
        visit_id=str(visit_id),
        old_status=old_status,
        new_status=target_status,
    )
    return visit


async def start_visit(
    db: AsyncSession,
    visit_id: uuid.UUID,
    technician_id: uuid.UUID,
    *,
    clock: Clock = system_clock,
) -> Visit:
    """Assign a technician and move the visit to in_progress."""
    try:
        visit = await get_visit(db, visit_id, for_update=True)
        plan = plan_transition(visit.status, "in_progress", current_stamps(visit))
        visit.assigned_technician_id = technician_id
        apply_plan(visit, plan, clock.now())
        await db.commit()
    except MaintenanceError:
        await db.rollback()
        raise
    except Exception as exc:
        await db.rollback()
        logger.error("execution.start_failed", visit_id=str(visit_id), technician_id=str(technician_id), error=str(exc))
        raise

    logger.info(
        "execution.visit_started",
        visit_id=str(visit_id),
        technician_id=str(technician_id),
        started_at=visit.started_at.isoformat() if visit.started_at else None,
    )
    return visit


async def get_technician_visits(
    db: AsyncSession,
    technician_id: uuid.UUID,
    status: str | None = None,
    tenant_id: uuid.UUID | None = None,
) -> list[Visit]:
    query = select(Visit).where(Visit.assigned_technician_id == technician_id)
    if status:
        query = query.where(Visit.status == status)
    if tenant_id is not None:
        query = query.where(Visit.tenant_id == tenant_id)
    result = await db.execute(query.order_by(Visit.scheduled_date))
    return list(result.scalars().all())


async def get_technician_performance(
    db: AsyncSession,
    technician_id: uuid.UUID,
    start_date: date | None = None,
    end_date: date | None = None,
    tenant_id: uuid.UUID | None = None,
) -> dict:
    query = select(Visit).where(Visit.assigned_technician_id == technician_id)
    if start_date:
        query = query.where(Visit.scheduled_date >= start_date)
    if end_date:
        query = query.where(Visit.scheduled_date <= end_date)
    if tenant_id is not None:
        query = query.where(Visit.tenant_id == tenant_id)
    visits = list((await db.execute(query)).scalars().all())

    total = len(visits)
    completed = [v for v in visits if v.status == "completed"]
    missed = sum(1 for v in visits if v.status == "missed")
    durations = [
        (v.completed_at - v.started_at).total_seconds() / 60
        for v in completed
        if v.started_at and v.completed_at
    ]

    return {
        "technician_id": str(technician_id),
        "total_visits": total,
        "completed_visits": len(completed),
        "missed_visits": missed,
        "completion_rate": round(len(completed) / total * 100, 2) if total else 0.0,
        "avg_duration_minutes": round(sum(durations) / len(durations), 2) if durations else None,
        "period_start": start_date.isoformat() if start_date else None,
        "period_end": end_date.isoformat() if end_date else None,
    }
