"""
Visit Scheduler — derive and reconcile planned visits from contract terms.

Generation is a diff-and-insert:
  1. Lock the contract row
  2. Compute the full candidate date set from the frequency terms
  3. Collect every date already occupied by one of the contract's visits
     (slot and current date, any status; cancelled slots stay vacated)
  4. Insert only the missing dates, each in its own SAVEPOINT so a
     concurrent writer tripping the unique index is treated as "already
     scheduled" instead of failing the run

Running it any number of times for the same contract state yields the
same visit set.
"""

import uuid
from datetime import date, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import Clock, system_clock
from core.config import get_settings
from db.models import MaintenanceContract, Visit
from maintenance.contracts import get_contract, list_active_contracts
from maintenance.errors import ContractNotActive, DateConflict, MaintenanceError
from maintenance.frequency import candidate_dates, resolve_step
from maintenance.state_machine import (
    OPEN_STATUSES,
    apply_plan,
    can_transition,
    current_stamps,
    plan_transition,
)
from maintenance.visits import get_visit, list_contract_visits

logger = structlog.get_logger()


def _horizon_end(contract: MaintenanceContract, today: date, horizon_days: int) -> date:
    return max(contract.start_date, today) + timedelta(days=horizon_days)


async def generate_scheduled_visits(
    db: AsyncSession,
    contract_id: uuid.UUID,
    *,
    clock: Clock = system_clock,
) -> list[Visit]:
    """
    Create the missing scheduled visits for an active contract.

    Returns every visit of the contract (existing + new) ordered by date.
    A non-active contract is a no-op that returns the existing visits.
    """
    settings = get_settings()
    created: list[Visit] = []

    try:
        contract = await get_contract(db, contract_id, for_update=True)
        if contract.status != "active":
            not_active = ContractNotActive(contract.contract_id, contract.status)
            logger.info("scheduling.contract_not_active", **not_active.to_dict())
            await db.commit()
            return await list_contract_visits(db, contract_id)

        step = resolve_step(contract.frequency, contract.frequency_value, contract.frequency_unit)
        dates = candidate_dates(
            step,
            contract.start_date,
            contract.end_date,
            _horizon_end(contract, clock.today(), settings.schedule_horizon_days),
            settings.schedule_max_visits_per_run,
        )

        existing = await list_contract_visits(db, contract_id)
        occupied = {v.slot_date for v in existing} | {v.scheduled_date for v in existing}

        for scheduled_date in dates:
            if scheduled_date in occupied:
                continue
            visit = Visit(
                contract_id=contract.contract_id,
                tenant_id=contract.tenant_id,
                branch_id=contract.branch_id,
                assigned_technician_id=contract.assigned_technician_id,
                slot_date=scheduled_date,
                scheduled_date=scheduled_date,
                status="scheduled",
            )
            try:
                async with db.begin_nested():
                    db.add(visit)
                    await db.flush()
            except IntegrityError:
                # Another writer filled this date between our read and insert.
                logger.info(
                    "scheduling.slot_taken",
                    contract_id=str(contract_id),
                    scheduled_date=scheduled_date.isoformat(),
                )
                continue
            occupied.add(scheduled_date)
            created.append(visit)

        await db.commit()
    except MaintenanceError:
        await db.rollback()
        raise
    except Exception as exc:
        await db.rollback()
        logger.error("scheduling.generate_failed", contract_id=str(contract_id), error=str(exc))
        raise

    logger.info(
        "scheduling.visits_generated",
        contract_id=str(contract_id),
        new_visits_count=len(created),
        total_scheduled_dates=len(dates),
    )
    return await list_contract_visits(db, contract_id)


async def generate_visits_for_active_contracts(
    db: AsyncSession,
    tenant_id: uuid.UUID | None = None,
    *,
    clock: Clock = system_clock,
) -> dict:
    """Run generation for every active contract (cron tick entry point)."""
    contracts = await list_active_contracts(db, tenant_id)
    contract_ids = [c.contract_id for c in contracts]
    visit_total = 0
    failed: list[str] = []
    for contract_id in contract_ids:
        try:
            visits = await generate_scheduled_visits(db, contract_id, clock=clock)
        except Exception as exc:  # noqa: BLE001
            failed.append(str(contract_id))
            logger.warning("scheduling.contract_skipped", contract_id=str(contract_id), error=str(exc))
            continue
        visit_total += len(visits)

    summary = {
        "contracts_processed": len(contract_ids) - len(failed),
        "contracts_failed": failed,
        "visit_total": visit_total,
    }
    logger.info("scheduling.tick_complete", tenant_id=str(tenant_id) if tenant_id else None, **summary)
    return summary


async def reschedule_visit(
    db: AsyncSession,
    visit_id: uuid.UUID,
    new_date: date,
    *,
    clock: Clock = system_clock,
) -> Visit:
    """
    Move one visit to ``new_date`` and mark it rescheduled.

    The visit keeps its slot_date, so regeneration does not refill the
    date it was moved away from. Fails with DateConflict if another live
    visit of the same contract is already on ``new_date``.
    """
    try:
        visit = await get_visit(db, visit_id, for_update=True)
        plan = plan_transition(visit.status, "rescheduled", current_stamps(visit))

        conflict = await db.scalar(
            select(Visit).where(
                Visit.contract_id == visit.contract_id,
                Visit.scheduled_date == new_date,
                Visit.status != "cancelled",
                Visit.visit_id != visit.visit_id,
            )
        )
        if conflict is not None:
            raise DateConflict(conflict.visit_id, new_date)

        old_date = visit.scheduled_date
        if new_date != old_date:
            visit.rescheduled_from = old_date
            visit.scheduled_date = new_date
        apply_plan(visit, plan, clock.now())
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning("scheduling.reschedule_conflict", visit_id=str(visit_id), new_date=new_date.isoformat())
        raise DateConflict(visit_id, new_date) from exc
    except MaintenanceError:
        await db.rollback()
        raise
    except Exception as exc:
        await db.rollback()
        logger.error("scheduling.reschedule_failed", visit_id=str(visit_id), error=str(exc))
        raise

    logger.info(
        "scheduling.visit_rescheduled",
        visit_id=str(visit_id),
        old_date=old_date.isoformat(),
        new_date=new_date.isoformat(),
    )
    return visit


async def _cancel_open_future_visits(
    db: AsyncSession,
    contract_id: uuid.UUID,
    clock: Clock,
) -> int:
    today = clock.today()
    result = await db.execute(
        select(Visit)
        .where(
            Visit.contract_id == contract_id,
            Visit.scheduled_date > today,
            Visit.status.in_(OPEN_STATUSES),
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    now = clock.now()
    cancelled = 0
    for visit in result.scalars().all():
        if not can_transition(visit.status, "cancelled"):
            continue
        apply_plan(visit, plan_transition(visit.status, "cancelled", current_stamps(visit)), now)
        cancelled += 1
    return cancelled


async def cancel_future_visits(
    db: AsyncSession,
    contract_id: uuid.UUID,
    *,
    clock: Clock = system_clock,
) -> int:
    """Cancel a contract's scheduled/rescheduled visits dated after today."""
    try:
        await get_contract(db, contract_id)
        cancelled = await _cancel_open_future_visits(db, contract_id, clock)
        await db.commit()
    except MaintenanceError:
        await db.rollback()
        raise
    except Exception as exc:
        await db.rollback()
        logger.error("scheduling.cancel_future_failed", contract_id=str(contract_id), error=str(exc))
        raise

    logger.info("scheduling.future_visits_cancelled", contract_id=str(contract_id), cancelled_count=cancelled)
    return cancelled


async def process_expired_contracts(
    db: AsyncSession,
    tenant_id: uuid.UUID | None = None,
    *,
    clock: Clock = system_clock,
) -> dict:
    """
    Close out active contracts whose end date has passed.

    Each expired contract becomes 'completed' and its open future visits
    are cancelled, all in one transaction.
    """
    today = clock.today()
    query = select(MaintenanceContract).where(
        MaintenanceContract.status == "active",
        MaintenanceContract.end_date.isnot(None),
        MaintenanceContract.end_date <= today,
    )
    if tenant_id is not None:
        query = query.where(MaintenanceContract.tenant_id == tenant_id)

    try:
        contracts = list((await db.execute(query.with_for_update())).scalars().all())
        total_cancelled = 0
        for contract in contracts:
            contract.status = "completed"
            total_cancelled += await _cancel_open_future_visits(db, contract.contract_id, clock)
        await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.error("scheduling.expire_contracts_failed", error=str(exc))
        raise

    summary = {
        "processed_contracts": len(contracts),
        "total_cancelled_visits": total_cancelled,
        "contract_ids": [str(c.contract_id) for c in contracts],
    }
    logger.info("scheduling.expired_contracts_processed", **summary)
    return summary


async def mark_overdue_visits_missed(
    db: AsyncSession,
    tenant_id: uuid.UUID | None = None,
    *,
    clock: Clock = system_clock,
) -> int:
    """Sweep open visits older than the grace period to 'missed'."""
    settings = get_settings()
    cutoff = clock.today() - timedelta(days=settings.missed_grace_days)
    query = select(Visit).where(
        Visit.status.in_(OPEN_STATUSES),
        Visit.scheduled_date < cutoff,
    )
    if tenant_id is not None:
        query = query.where(Visit.tenant_id == tenant_id)

    try:
        visits = list((await db.execute(query.with_for_update())).scalars().all())
        now = clock.now()
        for visit in visits:
            apply_plan(visit, plan_transition(visit.status, "missed", current_stamps(visit)), now)
        await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.error("scheduling.mark_missed_failed", error=str(exc))
        raise

    if visits:
        logger.info("scheduling.overdue_marked_missed", missed_count=len(visits), cutoff=cutoff.isoformat())
    return len(visits)


async def get_upcoming_visits(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    days: int = 7,
    *,
    clock: Clock = system_clock,
) -> list[Visit]:
    today = clock.today()
    result = await db.execute(
        select(Visit)
        .where(
            Visit.tenant_id == tenant_id,
            Visit.status.in_(OPEN_STATUSES),
            Visit.scheduled_date >= today,
            Visit.scheduled_date <= today + timedelta(days=days),
        )
        .order_by(Visit.scheduled_date)
    )
    return list(result.scalars().all())


async def get_overdue_visits(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    *,
    clock: Clock = system_clock,
) -> list[Visit]:
    result = await db.execute(
        select(Visit)
        .where(
            Visit.tenant_id == tenant_id,
            Visit.status.in_(OPEN_STATUSES),
            Visit.scheduled_date < clock.today(),
        )
        .order_by(Visit.scheduled_date)
    )
    return list(result.scalars().all())


async def get_scheduling_statistics(db: AsyncSession, tenant_id: uuid.UUID) -> dict:
    result = await db.execute(
        select(Visit.status, func.count(Visit.visit_id))
        .where(Visit.tenant_id == tenant_id)
        .group_by(Visit.status)
    )
    counts = {row[0]: row[1] for row in result.all()}
    total = sum(counts.values())
    completed = counts.get("completed", 0)
    missed = counts.get("missed", 0)
    return {
        "total_visits": total,
        "scheduled_visits": counts.get("scheduled", 0),
        "rescheduled_visits": counts.get("rescheduled", 0),
        "in_progress_visits": counts.get("in_progress", 0),
        "completed_visits": completed,
        "missed_visits": missed,
        "cancelled_visits": counts.get("cancelled", 0),
        "completion_rate": round(completed / total * 100, 2) if total else 0.0,
        "miss_rate": round(missed / total * 100, 2) if total else 0.0,
    }
