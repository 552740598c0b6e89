"""
Inventory Ledger — spare-parts stock with locked, conditional decrements.

Stock only moves through this module. Every change is a compare-and-set
UPDATE (``stock_quantity >= :qty`` for decrements) plus a StockMovement
row, so concurrent consumers can never drive a part below zero even when
the row lock is unavailable (SQLite).
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from db.models import Part, StockMovement
from maintenance.errors import InsufficientStock, InvalidPartLine, MaintenanceError, NotFound

logger = structlog.get_logger()


async def get_part(db: AsyncSession, part_id: uuid.UUID) -> Part:
    part = await db.get(Part, part_id)
    if part is None:
        raise NotFound("part", part_id)
    return part


async def create_part(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    sku: str,
    name: str,
    stock_quantity: int = 0,
    unit_cost: float = 0.0,
) -> Part:
    if stock_quantity < 0:
        raise InvalidPartLine(None, "stock_quantity must be non-negative")
    if unit_cost < 0:
        raise InvalidPartLine(None, "unit_cost must be non-negative")
    part = Part(
        tenant_id=tenant_id,
        sku=sku,
        name=name,
        stock_quantity=stock_quantity,
        unit_cost=unit_cost,
    )
    db.add(part)
    await db.flush()
    logger.info("inventory.part_created", part_id=str(part.part_id), sku=sku, stock_quantity=stock_quantity)
    return part


async def lock_parts(db: AsyncSession, part_ids: list[uuid.UUID]) -> dict[uuid.UUID, Part]:
    """
    Load and row-lock parts for the rest of the transaction.

    Locks are taken in part_id order so two completions touching the same
    parts cannot deadlock each other.
    """
    if not part_ids:
        return {}
    result = await db.execute(
        select(Part)
        .where(Part.part_id.in_(set(part_ids)))
        .order_by(Part.part_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {part.part_id: part for part in result.scalars().all()}


async def _current_stock(db: AsyncSession, part_id: uuid.UUID) -> int:
    return int(await db.scalar(select(Part.stock_quantity).where(Part.part_id == part_id)) or 0)


async def consume_stock(
    db: AsyncSession,
    part: Part,
    quantity: int,
    *,
    now: datetime,
    visit_id: uuid.UUID | None = None,
    reason: str | None = None,
) -> int:
    """
    Decrement a part's stock by exactly ``quantity``.

    Does not commit. Raises InsufficientStock if the conditional update
    matches no row, which leaves the transaction for the caller to roll back.
    Returns the stock remaining.
    """
    if quantity <= 0:
        raise InvalidPartLine(part.part_id, "quantity must be positive")

    result = await db.execute(
        update(Part)
        .where(Part.part_id == part.part_id, Part.stock_quantity >= quantity)
        .values(stock_quantity=Part.stock_quantity - quantity, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = await _current_stock(db, part.part_id)
        raise InsufficientStock(part.part_id, quantity, available)

    remaining = await _current_stock(db, part.part_id)
    set_committed_value(part, "stock_quantity", remaining)
    set_committed_value(part, "updated_at", now)

    db.add(
        StockMovement(
            tenant_id=part.tenant_id,
            part_id=part.part_id,
            visit_id=visit_id,
            movement_type="visit_consumption",
            quantity_delta=-quantity,
            stock_after=remaining,
            reason=reason,
            created_at=now,
        )
    )
    return remaining


async def replenish_part(
    db: AsyncSession,
    part_id: uuid.UUID,
    quantity: int,
    *,
    now: datetime,
    reason: str | None = None,
    movement_type: str = "replenishment",
) -> Part:
    """Add received or transferred stock to a part and commit."""
    if quantity <= 0:
        raise InvalidPartLine(part_id, "replenishment quantity must be positive")

    try:
        part = await get_part(db, part_id)
        await db.execute(
            update(Part)
            .where(Part.part_id == part_id)
            .values(stock_quantity=Part.stock_quantity + quantity, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        remaining = await _current_stock(db, part_id)
        set_committed_value(part, "stock_quantity", remaining)
        set_committed_value(part, "updated_at", now)
        db.add(
            StockMovement(
                tenant_id=part.tenant_id,
                part_id=part_id,
                movement_type=movement_type,
                quantity_delta=quantity,
                stock_after=remaining,
                reason=reason,
                created_at=now,
            )
        )
        await db.commit()
    except MaintenanceError:
        await db.rollback()
        raise
    except Exception as exc:
        await db.rollback()
        logger.error("inventory.replenish_failed", part_id=str(part_id), error=str(exc))
        raise

    logger.info("inventory.replenished", part_id=str(part_id), quantity=quantity, stock_quantity=remaining)
    return part


async def list_movements(db: AsyncSession, part_id: uuid.UUID) -> list[StockMovement]:
    result = await db.execute(
        select(StockMovement).where(StockMovement.part_id == part_id).order_by(StockMovement.created_at)
    )
    return list(result.scalars().all())
