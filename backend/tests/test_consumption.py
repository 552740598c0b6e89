"""
Tests for completing visits with parts: stock validation, decrement and
all-or-nothing behaviour.
"""

import uuid

import pytest
from sqlalchemy import func, select, update

from db.models import Part, StockMovement, VisitItem
from maintenance.consumption import PartUsage, complete_visit_with_parts, normalize_lines
from maintenance.errors import InsufficientStock, InvalidPartLine, InvalidTransition, NotFound
from maintenance.scheduling import generate_scheduled_visits


async def _item_count(db) -> int:
    return await db.scalar(select(func.count(VisitItem.item_id)))


async def _stock(db, part_id) -> int:
    return await db.scalar(select(Part.stock_quantity).where(Part.part_id == part_id))


@pytest.mark.asyncio
class TestCompleteVisitWithParts:
    async def test_insufficient_stock_changes_nothing(self, test_db, in_progress_visit, make_part, clock):
        part = await make_part("FLT-01", stock_quantity=5)
        part_id = part.part_id
        visit_id = in_progress_visit.visit_id

        with pytest.raises(InsufficientStock) as exc_info:
            await complete_visit_with_parts(
                test_db, visit_id, [PartUsage(part_id=part_id, quantity_used=10)], clock=clock
            )

        assert exc_info.value.part_id == part_id
        assert exc_info.value.requested == 10
        assert exc_info.value.available == 5
        assert await _stock(test_db, part_id) == 5
        assert await _item_count(test_db) == 0
        await test_db.refresh(in_progress_visit)
        assert in_progress_visit.status == "in_progress"
        assert in_progress_visit.completed_at is None

    async def test_two_parts_consumed(self, test_db, in_progress_visit, make_part, clock):
        filters = await make_part("FLT-01", stock_quantity=100, unit_cost=4.5)
        belts = await make_part("BLT-02", stock_quantity=50, unit_cost=12.0)
        clock.advance(hours=2)

        visit = await complete_visit_with_parts(
            test_db,
            in_progress_visit.visit_id,
            [
                PartUsage(part_id=filters.part_id, quantity_used=10),
                PartUsage(part_id=belts.part_id, quantity_used=25),
            ],
            clock=clock,
        )

        assert visit.status == "completed"
        assert visit.completed_at == clock.now()
        assert visit.total_cost == 345.0  # 10 × 4.5 + 25 × 12.0
        assert await _stock(test_db, filters.part_id) == 90
        assert await _stock(test_db, belts.part_id) == 25

        items = (await test_db.execute(select(VisitItem).where(VisitItem.visit_id == visit.visit_id))).scalars().all()
        assert sorted((i.quantity_used, i.total_cost) for i in items) == [(10, 45.0), (25, 300.0)]

    async def test_one_short_line_rejects_whole_batch(self, test_db, in_progress_visit, make_part, clock):
        plenty = await make_part("FLT-01", stock_quantity=100)
        scarce = await make_part("BLT-02", stock_quantity=3)
        plenty_id, scarce_id = plenty.part_id, scarce.part_id

        with pytest.raises(InsufficientStock) as exc_info:
            await complete_visit_with_parts(
                test_db,
                in_progress_visit.visit_id,
                [PartUsage(part_id=plenty_id, quantity_used=10), PartUsage(part_id=scarce_id, quantity_used=4)],
                clock=clock,
            )

        assert exc_info.value.part_id == scarce_id
        assert await _stock(test_db, plenty_id) == 100
        assert await _stock(test_db, scarce_id) == 3
        assert await test_db.scalar(select(func.count(StockMovement.movement_id))) == 0

    async def test_stock_drained_after_validation_rolls_back_batch(
        self, test_db, in_progress_visit, make_part, clock, monkeypatch
    ):
        filters = await make_part("FLT-01", stock_quantity=100, unit_cost=4.5)
        belts = await make_part("BLT-02", stock_quantity=50, unit_cost=12.0)
        filters_id, belts_id = filters.part_id, belts.part_id

        import maintenance.consumption as consumption

        real_consume = consumption.consume_stock

        async def drained_consume(db, part, quantity, **kwargs):
            # A concurrent completion takes the belts between validation and decrement.
            if part.part_id == belts_id:
                await db.execute(
                    update(Part).where(Part.part_id == belts_id).values(stock_quantity=3)
                )
            return await real_consume(db, part, quantity, **kwargs)

        monkeypatch.setattr(consumption, "consume_stock", drained_consume)

        with pytest.raises(InsufficientStock) as exc_info:
            await complete_visit_with_parts(
                test_db,
                in_progress_visit.visit_id,
                [
                    PartUsage(part_id=filters_id, quantity_used=10),
                    PartUsage(part_id=belts_id, quantity_used=25),
                ],
                clock=clock,
            )

        assert exc_info.value.part_id == belts_id
        assert exc_info.value.requested == 25
        assert exc_info.value.available == 3
        assert await _stock(test_db, filters_id) == 100
        assert await _stock(test_db, belts_id) == 50
        assert await _item_count(test_db) == 0
        assert await test_db.scalar(select(func.count(StockMovement.movement_id))) == 0
        await test_db.refresh(in_progress_visit)
        assert in_progress_visit.status == "in_progress"
        assert in_progress_visit.completed_at is None

    async def test_duplicate_lines_are_checked_against_total_demand(self, test_db, in_progress_visit, make_part, clock):
        part = await make_part("FLT-01", stock_quantity=5)
        part_id = part.part_id

        with pytest.raises(InsufficientStock) as exc_info:
            await complete_visit_with_parts(
                test_db,
                in_progress_visit.visit_id,
                [PartUsage(part_id=part_id, quantity_used=3), PartUsage(part_id=part_id, quantity_used=3)],
                clock=clock,
            )
        assert exc_info.value.requested == 6
        assert await _stock(test_db, part_id) == 5

    async def test_duplicate_lines_within_stock(self, test_db, in_progress_visit, make_part, clock):
        part = await make_part("FLT-01", stock_quantity=5, unit_cost=2.0)

        visit = await complete_visit_with_parts(
            test_db,
            in_progress_visit.visit_id,
            [PartUsage(part_id=part.part_id, quantity_used=2), PartUsage(part_id=part.part_id, quantity_used=3)],
            clock=clock,
        )
        assert visit.status == "completed"
        assert await _stock(test_db, part.part_id) == 0
        assert await _item_count(test_db) == 2

    async def test_zero_quantity_lines_are_skipped(self, test_db, in_progress_visit, make_part, clock):
        part = await make_part("FLT-01", stock_quantity=5)

        visit = await complete_visit_with_parts(
            test_db, in_progress_visit.visit_id, [PartUsage(part_id=part.part_id, quantity_used=0)], clock=clock
        )
        assert visit.status == "completed"
        assert await _item_count(test_db) == 0
        assert await _stock(test_db, part.part_id) == 5

    async def test_negative_quantity_rejected(self, test_db, in_progress_visit, make_part, clock):
        part = await make_part("FLT-01", stock_quantity=5)
        part_id = part.part_id

        with pytest.raises(InvalidPartLine):
            await complete_visit_with_parts(
                test_db, in_progress_visit.visit_id, [PartUsage(part_id=part_id, quantity_used=-2)], clock=clock
            )
        assert await _stock(test_db, part_id) == 5
        await test_db.refresh(in_progress_visit)
        assert in_progress_visit.status == "in_progress"

    async def test_unknown_part_is_skipped_by_default(self, test_db, in_progress_visit, make_part, clock):
        part = await make_part("FLT-01", stock_quantity=5, unit_cost=1.0)

        visit = await complete_visit_with_parts(
            test_db,
            in_progress_visit.visit_id,
            [PartUsage(part_id=uuid.uuid4(), quantity_used=1), PartUsage(part_id=part.part_id, quantity_used=2)],
            clock=clock,
            strict_unknown=False,
        )
        assert visit.status == "completed"
        assert visit.total_cost == 2.0
        assert await _item_count(test_db) == 1

    async def test_unknown_part_fails_in_strict_mode(self, test_db, in_progress_visit, make_part, clock):
        part = await make_part("FLT-01", stock_quantity=5)
        part_id = part.part_id

        with pytest.raises(NotFound):
            await complete_visit_with_parts(
                test_db,
                in_progress_visit.visit_id,
                [PartUsage(part_id=part_id, quantity_used=1), PartUsage(part_id=uuid.uuid4(), quantity_used=1)],
                clock=clock,
                strict_unknown=True,
            )
        assert await _stock(test_db, part_id) == 5

    async def test_other_tenants_part_is_treated_as_unknown(self, test_db, in_progress_visit, make_part, clock):
        foreign = await make_part(
            "FLT-01", stock_quantity=5, tenant_id=uuid.UUID("00000000-0000-0000-0000-000000000002")
        )
        foreign_id = foreign.part_id

        await complete_visit_with_parts(
            test_db,
            in_progress_visit.visit_id,
            [PartUsage(part_id=foreign_id, quantity_used=1)],
            clock=clock,
            strict_unknown=False,
        )
        assert await _stock(test_db, foreign_id) == 5

    async def test_line_unit_cost_overrides_part_cost(self, test_db, in_progress_visit, make_part, clock):
        part = await make_part("FLT-01", stock_quantity=5, unit_cost=10.0)

        visit = await complete_visit_with_parts(
            test_db,
            in_progress_visit.visit_id,
            [PartUsage(part_id=part.part_id, quantity_used=2, unit_cost=7.25)],
            clock=clock,
        )
        assert visit.total_cost == 14.5

    async def test_stock_movement_recorded(self, test_db, in_progress_visit, make_part, clock):
        part = await make_part("FLT-01", stock_quantity=8)

        await complete_visit_with_parts(
            test_db, in_progress_visit.visit_id, [{"part_id": str(part.part_id), "quantity": 3}], clock=clock
        )
        movement = await test_db.scalar(select(StockMovement).where(StockMovement.part_id == part.part_id))
        assert movement.movement_type == "visit_consumption"
        assert movement.quantity_delta == -3
        assert movement.stock_after == 5
        assert movement.visit_id == in_progress_visit.visit_id

    async def test_visit_must_be_in_progress(self, test_db, make_contract, make_part, clock):
        contract = await make_contract()
        visits = await generate_scheduled_visits(test_db, contract.contract_id, clock=clock)
        visit_id = visits[0].visit_id
        part = await make_part("FLT-01", stock_quantity=5)
        part_id = part.part_id

        with pytest.raises(InvalidTransition) as exc_info:
            await complete_visit_with_parts(
                test_db, visit_id, [PartUsage(part_id=part_id, quantity_used=1)], clock=clock
            )
        assert exc_info.value.from_status == "scheduled"
        assert await _stock(test_db, part_id) == 5

    async def test_completed_visit_cannot_consume_again(self, test_db, in_progress_visit, make_part, clock):
        part = await make_part("FLT-01", stock_quantity=5)
        part_id = part.part_id
        visit_id = in_progress_visit.visit_id
        await complete_visit_with_parts(test_db, visit_id, [PartUsage(part_id=part_id, quantity_used=1)], clock=clock)

        with pytest.raises(InvalidTransition):
            await complete_visit_with_parts(test_db, visit_id, [PartUsage(part_id=part_id, quantity_used=1)], clock=clock)
        assert await _stock(test_db, part_id) == 4


class TestNormalizeLines:
    def test_accepts_dict_aliases(self):
        part_id = uuid.uuid4()
        lines = normalize_lines([{"part_id": str(part_id), "quantity": 2, "unit_price": 3.5}])
        assert lines == [PartUsage(part_id=part_id, quantity_used=2, unit_cost=3.5)]

    def test_rejects_malformed_part_id(self):
        with pytest.raises(InvalidPartLine, match="malformed"):
            normalize_lines([{"part_id": "not-a-uuid", "quantity_used": 1}])

    def test_rejects_fractional_quantity(self):
        with pytest.raises(InvalidPartLine, match="whole number"):
            normalize_lines([{"part_id": str(uuid.uuid4()), "quantity_used": 1.5}])

    def test_rejects_non_numeric_unit_cost(self):
        with pytest.raises(InvalidPartLine, match="unit_cost must be numeric"):
            normalize_lines([{"part_id": str(uuid.uuid4()), "quantity_used": 1, "unit_cost": "abc"}])

    def test_rejects_negative_unit_cost(self):
        with pytest.raises(InvalidPartLine, match="unit_cost"):
            normalize_lines([PartUsage(part_id=uuid.uuid4(), quantity_used=1, unit_cost=-1.0)])

    def test_empty_input(self):
        assert normalize_lines(None) == []
