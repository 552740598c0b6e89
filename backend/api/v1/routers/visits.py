"""
Visit Router — technician-facing visit execution endpoints.

Status changes go through the execution state machine:
  scheduled → in_progress → completed / failed / no_access
Completion always consumes parts atomically, even with an empty list.
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_clock, get_tenant_db, get_tenant_id
from core.clock import Clock
from db.models import Visit
from maintenance.consumption import PartUsage, complete_visit_with_parts
from maintenance.errors import NotFound
from maintenance.execution import (
    get_technician_performance,
    get_technician_visits,
    start_visit,
    update_visit_status,
)
from maintenance.scheduling import (
    get_overdue_visits,
    get_scheduling_statistics,
    get_upcoming_visits,
    reschedule_visit,
)
from maintenance.visits import get_visit, list_visit_items

router = APIRouter(prefix="/api/v1/visits", tags=["visits"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class VisitResponse(BaseModel):
    visit_id: UUID
    contract_id: UUID
    tenant_id: UUID
    branch_id: UUID
    assigned_technician_id: UUID | None
    slot_date: date
    scheduled_date: date
    rescheduled_from: date | None
    status: str
    started_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    missed_at: datetime | None
    total_cost: float | None
    notes: str | None

    model_config = {"from_attributes": True}


class VisitItemResponse(BaseModel):
    item_id: UUID
    visit_id: UUID
    part_id: UUID
    quantity_used: int
    unit_cost: float
    total_cost: float
    created_at: datetime

    model_config = {"from_attributes": True}


class VisitStatusRequest(BaseModel):
    status: str = Field(
        ...,
        examples=["in_progress", "failed", "no_access", "cancelled", "missed"],
    )


class VisitStartRequest(BaseModel):
    technician_id: UUID


class VisitRescheduleRequest(BaseModel):
    new_date: date


class PartUsageLine(BaseModel):
    part_id: UUID
    # Sign is validated by the consumption coordinator so it can reject the batch.
    quantity_used: int
    unit_cost: float | None = None


class VisitCompleteRequest(BaseModel):
    parts_used: list[PartUsageLine] = []


class VisitStatistics(BaseModel):
    total_visits: int
    scheduled_visits: int
    rescheduled_visits: int
    in_progress_visits: int
    completed_visits: int
    missed_visits: int
    cancelled_visits: int
    completion_rate: float
    miss_rate: float


class TechnicianPerformance(BaseModel):
    technician_id: UUID
    total_visits: int
    completed_visits: int
    missed_visits: int
    completion_rate: float
    avg_duration_minutes: float | None
    period_start: date | None
    period_end: date | None


# ─── Helpers ────────────────────────────────────────────────────────────────


async def _get_owned_visit(db: AsyncSession, visit_id: UUID, tenant_id: UUID) -> Visit:
    visit = await get_visit(db, visit_id)
    if visit.tenant_id != tenant_id:
        raise NotFound("visit", visit_id)
    return visit


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/upcoming", response_model=list[VisitResponse])
async def list_upcoming_visits(
    days: int = Query(7, ge=0, le=365),
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    """Open visits scheduled between today and today + days."""
    return await get_upcoming_visits(db, tenant_id, days, clock=clock)


@router.get("/overdue", response_model=list[VisitResponse])
async def list_overdue_visits(
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    """Open visits whose date has passed but have not yet been swept to 'missed'."""
    return await get_overdue_visits(db, tenant_id, clock=clock)


@router.get("/statistics", response_model=VisitStatistics)
async def visit_statistics(
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return await get_scheduling_statistics(db, tenant_id)


@router.get("/technicians/{technician_id}", response_model=list[VisitResponse])
async def list_technician_visits(
    technician_id: UUID,
    status: str | None = None,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return await get_technician_visits(db, technician_id, status, tenant_id)


@router.get("/technicians/{technician_id}/performance", response_model=TechnicianPerformance)
async def technician_performance(
    technician_id: UUID,
    start_date: date | None = None,
    end_date: date | None = None,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return await get_technician_performance(db, technician_id, start_date, end_date, tenant_id)


@router.get("/{visit_id}", response_model=VisitResponse)
async def get_maintenance_visit(
    visit_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return await _get_owned_visit(db, visit_id, tenant_id)


@router.post("/{visit_id}/status", response_model=VisitResponse)
async def change_visit_status(
    visit_id: UUID,
    body: VisitStatusRequest,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    """
    Apply a state-machine transition.

    Illegal pairs return 409 with from/to status in the detail. Asking for
    'completed' here completes the visit with no parts.
    """
    await _get_owned_visit(db, visit_id, tenant_id)
    return await update_visit_status(db, visit_id, body.status, clock=clock)


@router.post("/{visit_id}/start", response_model=VisitResponse)
async def start_maintenance_visit(
    visit_id: UUID,
    body: VisitStartRequest,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    await _get_owned_visit(db, visit_id, tenant_id)
    return await start_visit(db, visit_id, body.technician_id, clock=clock)


@router.post("/{visit_id}/reschedule", response_model=VisitResponse)
async def reschedule_maintenance_visit(
    visit_id: UUID,
    body: VisitRescheduleRequest,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    await _get_owned_visit(db, visit_id, tenant_id)
    return await reschedule_visit(db, visit_id, body.new_date, clock=clock)


@router.post("/{visit_id}/complete", response_model=VisitResponse)
async def complete_maintenance_visit(
    visit_id: UUID,
    body: VisitCompleteRequest,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    """
    Complete an in-progress visit and consume the parts it used.

    All lines are checked against stock before anything is written; one
    short line rejects the whole batch with 409.
    """
    await _get_owned_visit(db, visit_id, tenant_id)
    lines = [
        PartUsage(part_id=line.part_id, quantity_used=line.quantity_used, unit_cost=line.unit_cost)
        for line in body.parts_used
    ]
    return await complete_visit_with_parts(db, visit_id, lines, clock=clock)


@router.get("/{visit_id}/items", response_model=list[VisitItemResponse])
async def list_maintenance_visit_items(
    visit_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    await _get_owned_visit(db, visit_id, tenant_id)
    return await list_visit_items(db, visit_id)
