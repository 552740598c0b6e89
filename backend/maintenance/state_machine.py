"""
Visit execution state machine.

Pure planning layer: given the current status, the requested status and
which timestamps are already set, produce a TransitionPlan describing the
new status and the timestamps to stamp. Persistence applies the plan
(see maintenance.execution); nothing here touches the database or a clock.

    scheduled   → in_progress, rescheduled, cancelled, missed
    rescheduled → in_progress, cancelled, missed
    in_progress → completed, failed, no_access
    failed      → rescheduled
    no_access   → rescheduled
    missed      → rescheduled
    completed   → (terminal)
    cancelled   → (terminal)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from maintenance.errors import InvalidTransition

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    "scheduled": frozenset({"in_progress", "rescheduled", "cancelled", "missed"}),
    "rescheduled": frozenset({"in_progress", "cancelled", "missed"}),
    "in_progress": frozenset({"completed", "failed", "no_access"}),
    "failed": frozenset({"rescheduled"}),
    "no_access": frozenset({"rescheduled"}),
    "missed": frozenset({"rescheduled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

STATUSES = tuple(VALID_TRANSITIONS)
INITIAL_STATUS = "scheduled"
TERMINAL_STATUSES = frozenset({"completed", "cancelled"})
# Statuses a visit can be cancelled from without having been worked on.
OPEN_STATUSES = frozenset({"scheduled", "rescheduled"})

TIMESTAMP_FIELDS: dict[str, str] = {
    "in_progress": "started_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
    "missed": "missed_at",
}


@dataclass(frozen=True)
class SetTimestamp:
    field: str


@dataclass(frozen=True)
class TransitionPlan:
    from_status: str
    to_status: str
    effects: tuple[SetTimestamp, ...] = field(default_factory=tuple)

    @property
    def is_noop(self) -> bool:
        return self.from_status == self.to_status and not self.effects


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def plan_transition(
    current: str,
    target: str,
    stamps: Mapping[str, datetime | None] | None = None,
) -> TransitionPlan:
    """
    Plan a status change.

    A request for the status the visit is already in is an idempotent
    no-op. Timestamps are only planned for fields that are still empty,
    so a visit re-entering a status keeps its first stamp.

    Raises InvalidTransition for any other pair outside the table.
    """
    if target not in VALID_TRANSITIONS:
        raise InvalidTransition(current, target)
    if current == target:
        return TransitionPlan(from_status=current, to_status=target)
    if not can_transition(current, target):
        raise InvalidTransition(current, target)

    stamps = stamps or {}
    effects: tuple[SetTimestamp, ...] = ()
    stamp_field = TIMESTAMP_FIELDS.get(target)
    if stamp_field and stamps.get(stamp_field) is None:
        effects = (SetTimestamp(stamp_field),)
    return TransitionPlan(from_status=current, to_status=target, effects=effects)


def current_stamps(visit: Any) -> dict[str, datetime | None]:
    return {name: getattr(visit, name) for name in TIMESTAMP_FIELDS.values()}


def apply_plan(visit: Any, plan: TransitionPlan, now: datetime) -> None:
    """Write a plan onto a visit-like object."""
    visit.status = plan.to_status
    for effect in plan.effects:
        if isinstance(effect, SetTimestamp) and getattr(visit, effect.field) is None:
            setattr(visit, effect.field, now)
