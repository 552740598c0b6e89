"""
Contract Router — maintenance contract lifecycle endpoints.

Contracts drive the visit schedule:
  1. Contract created as 'draft' (or directly 'active')
  2. Activation derives visits from the frequency terms
  3. Pause / complete / cancel → open future visits are cancelled
  4. Daily beat tick tops up visits for every active contract
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_clock, get_tenant_db, get_tenant_id
from api.v1.routers.visits import VisitResponse
from core.clock import Clock
from db.models import MaintenanceContract
from maintenance.contracts import change_contract_status, create_contract, get_contract
from maintenance.errors import NotFound
from maintenance.scheduling import cancel_future_visits, generate_scheduled_visits
from maintenance.visits import list_contract_visits

router = APIRouter(prefix="/api/v1/contracts", tags=["contracts"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ContractCreate(BaseModel):
    branch_id: UUID
    frequency: str = Field(
        ...,
        examples=["weekly", "monthly", "quarterly", "semi_annual", "annual", "custom"],
    )
    frequency_value: int | None = Field(None, gt=0)
    frequency_unit: str | None = Field(None, examples=["days", "weeks", "months", "years"])
    start_date: date
    end_date: date | None = None
    status: str = "draft"
    customer_name: str | None = None
    assigned_technician_id: UUID | None = None


class ContractResponse(BaseModel):
    contract_id: UUID
    tenant_id: UUID
    branch_id: UUID
    customer_name: str | None
    assigned_technician_id: UUID | None
    frequency: str
    frequency_value: int | None
    frequency_unit: str | None
    start_date: date
    end_date: date | None
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ContractStatusRequest(BaseModel):
    status: str = Field(..., examples=["active", "paused", "completed", "cancelled"])


class ContractStatusResponse(BaseModel):
    contract: ContractResponse
    visits_created: int
    visits_cancelled: int


class CancelFutureVisitsResponse(BaseModel):
    contract_id: UUID
    cancelled_count: int


# ─── Helpers ────────────────────────────────────────────────────────────────


async def _get_owned_contract(db: AsyncSession, contract_id: UUID, tenant_id: UUID) -> MaintenanceContract:
    contract = await get_contract(db, contract_id)
    if contract.tenant_id != tenant_id:
        raise NotFound("contract", contract_id)
    return contract


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=ContractResponse, status_code=201)
async def create_maintenance_contract(
    body: ContractCreate,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    """Create a contract. Contracts created as 'active' are scheduled immediately."""
    contract = await create_contract(
        db,
        tenant_id=tenant_id,
        branch_id=body.branch_id,
        frequency=body.frequency,
        frequency_value=body.frequency_value,
        frequency_unit=body.frequency_unit,
        start_date=body.start_date,
        end_date=body.end_date,
        status=body.status,
        customer_name=body.customer_name,
        assigned_technician_id=body.assigned_technician_id,
    )
    if contract.status == "active":
        await generate_scheduled_visits(db, contract.contract_id, clock=clock)
    return contract


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_maintenance_contract(
    contract_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return await _get_owned_contract(db, contract_id, tenant_id)


@router.post("/{contract_id}/status", response_model=ContractStatusResponse)
async def update_contract_status(
    contract_id: UUID,
    body: ContractStatusRequest,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    """
    Move a contract through draft → active ⇄ paused → completed/cancelled.

    Activation generates visits; leaving 'active' cancels open future visits.
    """
    await _get_owned_contract(db, contract_id, tenant_id)
    return await change_contract_status(db, contract_id, body.status, clock=clock)


@router.post("/{contract_id}/generate-visits", response_model=list[VisitResponse])
async def generate_contract_visits(
    contract_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    """Create any missing scheduled visits. Safe to call repeatedly."""
    await _get_owned_contract(db, contract_id, tenant_id)
    return await generate_scheduled_visits(db, contract_id, clock=clock)


@router.post("/{contract_id}/cancel-future-visits", response_model=CancelFutureVisitsResponse)
async def cancel_contract_future_visits(
    contract_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    await _get_owned_contract(db, contract_id, tenant_id)
    cancelled = await cancel_future_visits(db, contract_id, clock=clock)
    return CancelFutureVisitsResponse(contract_id=contract_id, cancelled_count=cancelled)


@router.get("/{contract_id}/visits", response_model=list[VisitResponse])
async def list_visits_for_contract(
    contract_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    """Every visit of the contract, cancelled ones included, by date."""
    await _get_owned_contract(db, contract_id, tenant_id)
    return await list_contract_visits(db, contract_id)
