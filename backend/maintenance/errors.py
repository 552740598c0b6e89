"""
Maintenance engine error taxonomy.

All errors carry the identifiers needed to act on them and serialize to
a plain dict for API detail payloads.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Any


class MaintenanceError(Exception):
    """Base exception for visit lifecycle engine errors."""

    code = "maintenance_error"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class NotFound(MaintenanceError):
    """Referenced contract, visit or part does not exist."""

    code = "not_found"

    def __init__(self, entity_kind: str, entity_id: uuid.UUID | str):
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        super().__init__(f"{entity_kind} {entity_id} not found")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "entity_kind": self.entity_kind, "entity_id": str(self.entity_id)}


class InvalidTransition(MaintenanceError):
    """Attempted visit status change is not in the transition table."""

    code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid status transition from {from_status} to {to_status}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "from_status": self.from_status, "to_status": self.to_status}


class InsufficientStock(MaintenanceError):
    """A completion line asks for more units than the part has in stock."""

    code = "insufficient_stock"

    def __init__(self, part_id: uuid.UUID, requested: int, available: int):
        self.part_id = part_id
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient stock for part {part_id}. Available: {available}, Required: {requested}")

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "part_id": str(self.part_id),
            "requested": self.requested,
            "available": self.available,
        }


class ContractNotActive(MaintenanceError):
    """Scheduler was asked to derive visits for a contract that is not active.

    The scheduler logs this and returns the existing visits; it is not raised
    to callers.
    """

    code = "contract_not_active"

    def __init__(self, contract_id: uuid.UUID, status: str):
        self.contract_id = contract_id
        self.status = status
        super().__init__(f"Contract {contract_id} is {status}, not active")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "contract_id": str(self.contract_id), "status": self.status}


class DateConflict(MaintenanceError):
    """Another live visit of the same contract already occupies the date."""

    code = "date_conflict"

    def __init__(self, visit_id: uuid.UUID, scheduled_date: date):
        self.visit_id = visit_id
        self.scheduled_date = scheduled_date
        super().__init__(f"Visit {visit_id} is already scheduled on {scheduled_date.isoformat()}")

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "visit_id": str(self.visit_id),
            "scheduled_date": self.scheduled_date.isoformat(),
        }


class InvalidPartLine(MaintenanceError):
    code = "invalid_part_line"

    def __init__(self, part_id: uuid.UUID | None, reason: str):
        self.part_id = part_id
        self.reason = reason
        super().__init__(f"Invalid parts line for {part_id}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "part_id": str(self.part_id) if self.part_id else None, "reason": self.reason}


class InvalidContractTerms(MaintenanceError):
    code = "invalid_contract_terms"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)
