"""
Contract Store — maintenance contracts and their lifecycle.

Contract status drives scheduling: only 'active' contracts get new visits,
and leaving 'active' for paused/completed/cancelled cancels the contract's
open future visits. Past visits are never touched.
"""

import uuid
from datetime import date

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import Clock, system_clock
from db.models import MaintenanceContract, Visit
from maintenance.errors import InvalidTransition, MaintenanceError, NotFound
from maintenance.frequency import validate_terms

logger = structlog.get_logger()

CONTRACT_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"active", "cancelled"}),
    "active": frozenset({"paused", "completed", "cancelled"}),
    "paused": frozenset({"active", "completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}
INITIAL_CONTRACT_STATUSES = frozenset({"draft", "active"})
# Leaving 'active' for one of these stops scheduling and vacates future visits.
SCHEDULING_STOP_STATUSES = frozenset({"paused", "completed", "cancelled"})


async def get_contract(
    db: AsyncSession,
    contract_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> MaintenanceContract:
    """Read a contract; ``for_update`` row-locks it for the current transaction."""
    query = select(MaintenanceContract).where(MaintenanceContract.contract_id == contract_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    contract = (await db.execute(query)).scalar_one_or_none()
    if contract is None:
        raise NotFound("contract", contract_id)
    return contract


async def create_contract(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    branch_id: uuid.UUID,
    frequency: str,
    start_date: date,
    end_date: date | None = None,
    frequency_value: int | None = None,
    frequency_unit: str | None = None,
    status: str = "draft",
    customer_name: str | None = None,
    assigned_technician_id: uuid.UUID | None = None,
) -> MaintenanceContract:
    validate_terms(frequency, frequency_value, frequency_unit, start_date, end_date)
    if status not in INITIAL_CONTRACT_STATUSES:
        raise InvalidTransition("new", status)

    contract = MaintenanceContract(
        tenant_id=tenant_id,
        branch_id=branch_id,
        frequency=frequency,
        frequency_value=frequency_value if frequency == "custom" else None,
        frequency_unit=frequency_unit if frequency == "custom" else None,
        start_date=start_date,
        end_date=end_date,
        status=status,
        customer_name=customer_name,
        assigned_technician_id=assigned_technician_id,
    )
    db.add(contract)
    await db.commit()
    logger.info(
        "contracts.created",
        contract_id=str(contract.contract_id),
        tenant_id=str(tenant_id),
        frequency=frequency,
        status=status,
    )
    return contract


async def change_contract_status(
    db: AsyncSession,
    contract_id: uuid.UUID,
    new_status: str,
    *,
    clock: Clock = system_clock,
) -> dict:
    """
    Move a contract through its lifecycle.

    Activation derives the visit schedule; pausing, completing or
    cancelling cancels open future visits. Returns a summary with the
    contract and the number of visits created or cancelled.
    """
    from maintenance.scheduling import cancel_future_visits, generate_scheduled_visits

    try:
        contract = await get_contract(db, contract_id)
        old_status = contract.status
        if new_status == old_status:
            return {"contract": contract, "visits_created": 0, "visits_cancelled": 0}
        if new_status not in CONTRACT_TRANSITIONS.get(old_status, frozenset()):
            raise InvalidTransition(old_status, new_status)

        contract.status = new_status
        await db.commit()
    except MaintenanceError:
        await db.rollback()
        raise
    except Exception as exc:
        await db.rollback()
        logger.error(
            "contracts.status_change_failed",
            contract_id=str(contract_id),
            new_status=new_status,
            error=str(exc),
        )
        raise

    logger.info(
        "contracts.status_changed",
        contract_id=str(contract_id),
        old_status=old_status,
        new_status=new_status,
    )

    visits_created = 0
    visits_cancelled = 0
    if new_status == "active":
        before = len(await list_contract_visit_ids(db, contract_id))
        visits = await generate_scheduled_visits(db, contract_id, clock=clock)
        visits_created = len(visits) - before
    elif new_status in SCHEDULING_STOP_STATUSES:
        visits_cancelled = await cancel_future_visits(db, contract_id, clock=clock)

    return {"contract": contract, "visits_created": visits_created, "visits_cancelled": visits_cancelled}


async def list_contract_visit_ids(db: AsyncSession, contract_id: uuid.UUID) -> list[uuid.UUID]:
    result = await db.execute(select(Visit.visit_id).where(Visit.contract_id == contract_id))
    return [row.visit_id for row in result.all()]


async def list_active_contracts(db: AsyncSession, tenant_id: uuid.UUID | None = None) -> list[MaintenanceContract]:
    query = select(MaintenanceContract).where(MaintenanceContract.status == "active")
    if tenant_id is not None:
        query = query.where(MaintenanceContract.tenant_id == tenant_id)
    result = await db.execute(query.order_by(MaintenanceContract.created_at))
    return list(result.scalars().all())
