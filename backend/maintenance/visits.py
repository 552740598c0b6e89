"""Visit lookups shared by the scheduler, state machine and consumption paths."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Visit, VisitItem
from maintenance.errors import NotFound


async def get_visit(db: AsyncSession, visit_id: uuid.UUID, *, for_update: bool = False) -> Visit:
    """Read a visit; ``for_update`` row-locks it and refreshes any cached copy."""
    query = select(Visit).where(Visit.visit_id == visit_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    visit = (await db.execute(query)).scalar_one_or_none()
    if visit is None:
        raise NotFound("visit", visit_id)
    return visit


async def list_contract_visits(db: AsyncSession, contract_id: uuid.UUID) -> list[Visit]:
    result = await db.execute(
        select(Visit)
        .where(Visit.contract_id == contract_id)
        .order_by(Visit.scheduled_date, Visit.created_at)
    )
    return list(result.scalars().all())


async def list_visit_items(db: AsyncSession, visit_id: uuid.UUID) -> list[VisitItem]:
    result = await db.execute(
        select(VisitItem).where(VisitItem.visit_id == visit_id).order_by(VisitItem.created_at)
    )
    return list(result.scalars().all())
