"""
Parts Consumption Coordinator — complete a visit and consume its parts.

One transaction covers the whole completion:
  1. Lock the visit, require 'in_progress'
  2. Normalize the parts lines (negative → error, zero → skipped)
  3. Lock every referenced part (part_id order) and drop unknown parts
  4. Validate total demand per part against stock BEFORE any write
  5. Decrement stock, write one VisitItem per line, stamp completed_at

Any failure rolls the transaction back: no stock moves, no VisitItem rows
exist and the visit stays 'in_progress'.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import Clock, system_clock
from core.config import get_settings
from db.models import Part, Visit, VisitItem
from maintenance.errors import InsufficientStock, InvalidPartLine, InvalidTransition, MaintenanceError, NotFound
from maintenance.inventory import consume_stock, lock_parts
from maintenance.state_machine import apply_plan, current_stamps, plan_transition
from maintenance.visits import get_visit

logger = structlog.get_logger()


@dataclass(frozen=True)
class PartUsage:
    """One parts line reported by the technician."""

    part_id: uuid.UUID
    quantity_used: int
    unit_cost: float | None = None


def _coerce_line(raw: PartUsage | Mapping[str, Any]) -> PartUsage:
    if isinstance(raw, PartUsage):
        line = raw
    else:
        part_ref = raw.get("part_id")
        if part_ref is None:
            raise InvalidPartLine(None, "part_id is required")
        unit_cost = raw.get("unit_cost", raw.get("unit_price"))
        try:
            part_id = part_ref if isinstance(part_ref, uuid.UUID) else uuid.UUID(str(part_ref))
        except ValueError as exc:
            raise InvalidPartLine(None, f"malformed part_id {part_ref!r}") from exc
        if unit_cost is not None:
            try:
                unit_cost = float(unit_cost)
            except (TypeError, ValueError) as exc:
                raise InvalidPartLine(part_id, "unit_cost must be numeric") from exc
        line = PartUsage(
            part_id=part_id,
            quantity_used=raw.get("quantity_used", raw.get("quantity", 0)),
            unit_cost=unit_cost,
        )
    if isinstance(line.quantity_used, bool) or not isinstance(line.quantity_used, int):
        raise InvalidPartLine(line.part_id, "quantity_used must be a whole number")
    if line.quantity_used < 0:
        raise InvalidPartLine(line.part_id, "quantity_used must be positive")
    if line.unit_cost is not None and line.unit_cost < 0:
        raise InvalidPartLine(line.part_id, "unit_cost must be non-negative")
    return line


def normalize_lines(parts_used: Iterable[PartUsage | Mapping[str, Any]] | None) -> list[PartUsage]:
    """Validate raw lines and drop zero-quantity ones."""
    lines: list[PartUsage] = []
    for raw in parts_used or ():
        line = _coerce_line(raw)
        if line.quantity_used == 0:
            logger.info("consumption.zero_quantity_line_skipped", part_id=str(line.part_id))
            continue
        lines.append(line)
    return lines


def check_availability(lines: list[PartUsage], parts: Mapping[uuid.UUID, Part]) -> None:
    """Raise InsufficientStock for the first part whose total demand exceeds stock."""
    demand: dict[uuid.UUID, int] = defaultdict(int)
    for line in lines:
        demand[line.part_id] += line.quantity_used
    for part_id, requested in demand.items():
        available = parts[part_id].stock_quantity
        if requested > available:
            raise InsufficientStock(part_id, requested, available)


async def complete_visit_with_parts(
    db: AsyncSession,
    visit_id: uuid.UUID,
    parts_used: Iterable[PartUsage | Mapping[str, Any]] | None = None,
    *,
    clock: Clock = system_clock,
    strict_unknown: bool | None = None,
) -> Visit:
    """
    Complete an in-progress visit, consuming the parts it used.

    Lines for unknown parts are skipped with a warning unless
    ``strict_unknown`` (default: settings.parts_strict_unknown) is set, in
    which case they raise NotFound. Insufficient stock on any line rejects
    the whole batch.
    """
    if strict_unknown is None:
        strict_unknown = get_settings().parts_strict_unknown

    try:
        visit = await get_visit(db, visit_id, for_update=True)
        if visit.status != "in_progress":
            raise InvalidTransition(visit.status, "completed")
        plan = plan_transition(visit.status, "completed", current_stamps(visit))

        lines = normalize_lines(parts_used)
        parts = await lock_parts(db, [line.part_id for line in lines])

        accepted: list[PartUsage] = []
        for line in lines:
            part = parts.get(line.part_id)
            if part is None or part.tenant_id != visit.tenant_id:
                if strict_unknown:
                    raise NotFound("part", line.part_id)
                logger.warning(
                    "consumption.unknown_part_skipped",
                    visit_id=str(visit_id),
                    part_id=str(line.part_id),
                )
                continue
            accepted.append(line)

        check_availability(accepted, parts)

        now = clock.now()
        total_cost = 0.0
        for line in accepted:
            part = parts[line.part_id]
            unit_cost = line.unit_cost if line.unit_cost is not None else float(part.unit_cost or 0.0)
            remaining = await consume_stock(
                db,
                part,
                line.quantity_used,
                now=now,
                visit_id=visit.visit_id,
                reason="visit_completion",
            )
            item = VisitItem(
                visit_id=visit.visit_id,
                part_id=part.part_id,
                tenant_id=visit.tenant_id,
                quantity_used=line.quantity_used,
                unit_cost=unit_cost,
                total_cost=line.quantity_used * unit_cost,
                created_at=now,
            )
            db.add(item)
            total_cost += item.total_cost
            logger.info(
                "consumption.part_used",
                visit_id=str(visit_id),
                part_id=str(part.part_id),
                quantity=line.quantity_used,
                remaining_stock=remaining,
            )

        apply_plan(visit, plan, now)
        visit.total_cost = round(total_cost, 2)
        await db.commit()
    except InsufficientStock as exc:
        await db.rollback()
        logger.warning("consumption.insufficient_stock", visit_id=str(visit_id), **exc.to_dict())
        raise
    except MaintenanceError:
        await db.rollback()
        raise
    except Exception as exc:
        await db.rollback()
        logger.error("consumption.complete_failed", visit_id=str(visit_id), error=str(exc))
        raise

    logger.info(
        "consumption.visit_completed",
        visit_id=str(visit_id),
        parts_used_count=len(accepted),
        total_cost=visit.total_cost,
    )
    return visit
