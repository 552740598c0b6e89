"""
Parts Router — spare-parts stock endpoints.

Stock is decremented only by visit completion; this router covers the
receiving side (new parts, replenishment) and the movement audit trail.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_clock, get_tenant_db, get_tenant_id
from core.clock import Clock
from db.models import Part
from maintenance.errors import NotFound
from maintenance.inventory import create_part, get_part, list_movements, replenish_part

router = APIRouter(prefix="/api/v1/parts", tags=["parts"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class PartCreate(BaseModel):
    sku: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    stock_quantity: int = Field(0, ge=0)
    unit_cost: float = Field(0.0, ge=0)


class PartResponse(BaseModel):
    part_id: UUID
    tenant_id: UUID
    sku: str
    name: str
    stock_quantity: int
    unit_cost: float
    updated_at: datetime

    model_config = {"from_attributes": True}


class ReplenishRequest(BaseModel):
    quantity: int = Field(..., gt=0)
    reason: str | None = None


class StockMovementResponse(BaseModel):
    movement_id: UUID
    part_id: UUID
    visit_id: UUID | None
    movement_type: str
    quantity_delta: int
    stock_after: int
    reason: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


async def _get_owned_part(db: AsyncSession, part_id: UUID, tenant_id: UUID) -> Part:
    part = await get_part(db, part_id)
    if part.tenant_id != tenant_id:
        raise NotFound("part", part_id)
    return part


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=PartResponse, status_code=201)
async def create_spare_part(
    body: PartCreate,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    try:
        part = await create_part(
            db,
            tenant_id=tenant_id,
            sku=body.sku,
            name=body.name,
            stock_quantity=body.stock_quantity,
            unit_cost=body.unit_cost,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail=f"Part with SKU '{body.sku}' already exists")
    return part


@router.get("/{part_id}", response_model=PartResponse)
async def get_spare_part(
    part_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    return await _get_owned_part(db, part_id, tenant_id)


@router.post("/{part_id}/replenish", response_model=PartResponse)
async def replenish_spare_part(
    part_id: UUID,
    body: ReplenishRequest,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    clock: Clock = Depends(get_clock),
):
    """Add received stock (e.g. a warehouse transfer) to a part."""
    await _get_owned_part(db, part_id, tenant_id)
    return await replenish_part(db, part_id, body.quantity, now=clock.now(), reason=body.reason)


@router.get("/{part_id}/movements", response_model=list[StockMovementResponse])
async def list_part_movements(
    part_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    await _get_owned_part(db, part_id, tenant_id)
    return await list_movements(db, part_id)
