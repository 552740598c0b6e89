"""
Visit lifecycle engine.

Derives planned visits from maintenance contracts, drives each visit
through its execution state machine and consumes spare parts when a visit
is completed.

Usage:
    from maintenance.scheduling import generate_scheduled_visits
    from maintenance.execution import update_visit_status
    from maintenance.consumption import PartUsage, complete_visit_with_parts

    visits = await generate_scheduled_visits(db, contract_id)
    await update_visit_status(db, visits[0].visit_id, "in_progress")
    await complete_visit_with_parts(
        db,
        visits[0].visit_id,
        [PartUsage(part_id=filter_id, quantity_used=2)],
    )
"""
