"""
Tests for persisted visit transitions and technician views.
"""

import uuid
from datetime import date

import pytest

from maintenance.errors import InvalidTransition, NotFound
from maintenance.execution import (
    get_technician_performance,
    get_technician_visits,
    start_visit,
    update_visit_status,
)
from maintenance.scheduling import generate_scheduled_visits


@pytest.fixture
async def visits(test_db, make_contract, clock):
    contract = await make_contract()
    return await generate_scheduled_visits(test_db, contract.contract_id, clock=clock)


@pytest.mark.asyncio
class TestUpdateVisitStatus:
    async def test_scheduled_cannot_jump_to_completed(self, test_db, visits, clock):
        visit = visits[0]
        with pytest.raises(InvalidTransition) as exc_info:
            await update_visit_status(test_db, visit.visit_id, "completed", clock=clock)

        assert exc_info.value.from_status == "scheduled"
        assert exc_info.value.to_status == "completed"
        await test_db.refresh(visit)
        assert visit.status == "scheduled"
        assert visit.completed_at is None

    async def test_in_progress_stamps_started_at(self, test_db, visits, clock):
        visit = await update_visit_status(test_db, visits[0].visit_id, "in_progress", clock=clock)
        assert visit.status == "in_progress"
        assert visit.started_at == clock.now()

    async def test_same_status_is_noop(self, test_db, visits, clock):
        first = clock.now()
        await update_visit_status(test_db, visits[0].visit_id, "in_progress", clock=clock)
        clock.advance(minutes=30)

        visit = await update_visit_status(test_db, visits[0].visit_id, "in_progress", clock=clock)
        assert visit.status == "in_progress"
        assert visit.started_at == first

    async def test_started_at_survives_a_second_attempt(self, test_db, visits, clock):
        """no_access → rescheduled → in_progress keeps the first start time."""
        visit_id = visits[0].visit_id
        first = clock.now()
        await update_visit_status(test_db, visit_id, "in_progress", clock=clock)
        await update_visit_status(test_db, visit_id, "no_access", clock=clock)
        clock.advance(days=2)
        await update_visit_status(test_db, visit_id, "rescheduled", clock=clock)
        visit = await update_visit_status(test_db, visit_id, "in_progress", clock=clock)

        assert visit.status == "in_progress"
        assert visit.started_at == first

    async def test_completed_routes_through_consumption(self, test_db, visits, clock):
        await update_visit_status(test_db, visits[0].visit_id, "in_progress", clock=clock)
        clock.advance(hours=1)

        visit = await update_visit_status(test_db, visits[0].visit_id, "completed", clock=clock)
        assert visit.status == "completed"
        assert visit.completed_at == clock.now()
        assert visit.total_cost == 0.0

    async def test_cancelled_is_terminal(self, test_db, visits, clock):
        visit_id = visits[1].visit_id
        visit = await update_visit_status(test_db, visit_id, "cancelled", clock=clock)
        assert visit.cancelled_at == clock.now()

        for target in ("scheduled", "in_progress", "rescheduled", "missed"):
            with pytest.raises(InvalidTransition):
                await update_visit_status(test_db, visit_id, target, clock=clock)

    async def test_unknown_status_is_rejected(self, test_db, visits, clock):
        with pytest.raises(InvalidTransition):
            await update_visit_status(test_db, visits[0].visit_id, "archived", clock=clock)

    async def test_unknown_visit(self, test_db, clock):
        with pytest.raises(NotFound):
            await update_visit_status(test_db, uuid.uuid4(), "in_progress", clock=clock)


@pytest.mark.asyncio
class TestStartVisit:
    async def test_assigns_technician(self, test_db, visits, clock):
        technician_id = uuid.uuid4()
        visit = await start_visit(test_db, visits[0].visit_id, technician_id, clock=clock)

        assert visit.status == "in_progress"
        assert visit.assigned_technician_id == technician_id
        assert visit.started_at == clock.now()

    async def test_missed_visit_cannot_be_started(self, test_db, visits, clock):
        visit = visits[0]
        await update_visit_status(test_db, visit.visit_id, "missed", clock=clock)

        with pytest.raises(InvalidTransition):
            await start_visit(test_db, visit.visit_id, uuid.uuid4(), clock=clock)
        await test_db.refresh(visit)
        assert visit.assigned_technician_id is None


@pytest.mark.asyncio
class TestTechnicianViews:
    async def test_visits_and_performance(self, test_db, visits, clock):
        technician_id = uuid.uuid4()
        await start_visit(test_db, visits[0].visit_id, technician_id, clock=clock)
        clock.advance(minutes=90)
        await update_visit_status(test_db, visits[0].visit_id, "completed", clock=clock)
        await start_visit(test_db, visits[1].visit_id, technician_id, clock=clock)
        await update_visit_status(test_db, visits[1].visit_id, "failed", clock=clock)

        assigned = await get_technician_visits(test_db, technician_id)
        assert [v.scheduled_date for v in assigned] == [date(2024, 1, 1), date(2024, 2, 1)]
        completed = await get_technician_visits(test_db, technician_id, status="completed")
        assert len(completed) == 1

        performance = await get_technician_performance(test_db, technician_id)
        assert performance["total_visits"] == 2
        assert performance["completed_visits"] == 1
        assert performance["completion_rate"] == 50.0
        assert performance["avg_duration_minutes"] == 90.0

    async def test_performance_without_visits(self, test_db):
        performance = await get_technician_performance(
            test_db, uuid.uuid4(), start_date=date(2024, 1, 1), end_date=date(2024, 1, 31)
        )
        assert performance["total_visits"] == 0
        assert performance["completion_rate"] == 0.0
        assert performance["avg_duration_minutes"] is None
        assert performance["period_start"] == "2024-01-01"
