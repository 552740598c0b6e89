"""
MaintainOps Database Models

Tables for the maintenance-contract visit lifecycle engine.
Multi-tenant via tenant_id on every table.

Tables:
  1. maintenance_contracts   - Customer contracts and their frequency terms
  2. maintenance_visits      - Planned/executed visits (never deleted)
  3. maintenance_visit_items - Parts usage lines written on completion
  4. parts                   - Spare-parts inventory (stock ledger head)
  5. stock_movements         - Audit trail of every stock change
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# Alias so Column(UUID(as_uuid=True)) reads like the PostgreSQL dialect type
def UUID(as_uuid=True):
    return GUID()


CONTRACT_STATUSES = ("draft", "active", "paused", "completed", "cancelled")
CONTRACT_FREQUENCIES = ("weekly", "monthly", "quarterly", "semi_annual", "annual", "custom")
FREQUENCY_UNITS = ("days", "weeks", "months", "years")
VISIT_STATUSES = (
    "scheduled",
    "rescheduled",
    "in_progress",
    "completed",
    "failed",
    "no_access",
    "cancelled",
    "missed",
)
MOVEMENT_TYPES = ("visit_consumption", "replenishment", "adjustment")


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ─── 1. Maintenance Contracts ──────────────────────────────────────────────


class MaintenanceContract(Base):
    __tablename__ = "maintenance_contracts"

    contract_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    branch_id = Column(UUID(as_uuid=True), nullable=False)
    customer_name = Column(String(255))
    assigned_technician_id = Column(UUID(as_uuid=True))  # default technician for generated visits
    frequency = Column(String(20), nullable=False, default="monthly")
    frequency_value = Column(Integer)  # only for frequency='custom'
    frequency_unit = Column(String(10))  # days, weeks, months, years
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)  # NULL = open-ended
    status = Column(String(20), nullable=False, default="draft")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    visits = relationship("Visit", back_populates="contract", order_by="Visit.scheduled_date")

    __table_args__ = (
        Index("ix_contracts_tenant_status", "tenant_id", "status"),
        Index("ix_contracts_branch", "tenant_id", "branch_id"),
        CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_contract_date_range"),
        CheckConstraint(_in_list("status", CONTRACT_STATUSES), name="ck_contract_status"),
        CheckConstraint(_in_list("frequency", CONTRACT_FREQUENCIES), name="ck_contract_frequency"),
        CheckConstraint(
            "frequency_value IS NULL OR frequency_value > 0",
            name="ck_contract_frequency_value_positive",
        ),
    )


# ─── 2. Maintenance Visits ─────────────────────────────────────────────────


class Visit(Base):
    """One planned or executed maintenance occurrence.

    ``slot_date`` is the date the scheduler derived the visit for and never
    changes; ``scheduled_date`` moves on reschedule.
    """

    __tablename__ = "maintenance_visits"

    visit_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contract_id = Column(UUID(as_uuid=True), ForeignKey("maintenance_contracts.contract_id"), nullable=False)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    branch_id = Column(UUID(as_uuid=True), nullable=False)
    assigned_technician_id = Column(UUID(as_uuid=True))
    slot_date = Column(Date, nullable=False)
    scheduled_date = Column(Date, nullable=False)
    rescheduled_from = Column(Date)
    status = Column(String(20), nullable=False, default="scheduled")
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    missed_at = Column(DateTime)
    total_cost = Column(Float)
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    contract = relationship("MaintenanceContract", back_populates="visits")
    items = relationship("VisitItem", back_populates="visit", order_by="VisitItem.created_at")

    __table_args__ = (
        # One live visit per contract per day; cancelled rows keep history only.
        Index(
            "uq_visit_contract_date_active",
            "contract_id",
            "scheduled_date",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("ix_visits_contract_slot", "contract_id", "slot_date"),
        Index("ix_visits_tenant_status_date", "tenant_id", "status", "scheduled_date"),
        Index("ix_visits_technician", "assigned_technician_id", "scheduled_date"),
        CheckConstraint(_in_list("status", VISIT_STATUSES), name="ck_visit_status"),
    )


# ─── 3. Visit Items (parts usage lines) ────────────────────────────────────


class VisitItem(Base):
    """Immutable parts usage line, written only by a successful completion."""

    __tablename__ = "maintenance_visit_items"

    item_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    visit_id = Column(UUID(as_uuid=True), ForeignKey("maintenance_visits.visit_id"), nullable=False)
    part_id = Column(UUID(as_uuid=True), ForeignKey("parts.part_id"), nullable=False)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    quantity_used = Column(Integer, nullable=False)
    unit_cost = Column(Float, nullable=False)
    total_cost = Column(Float, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    visit = relationship("Visit", back_populates="items")
    part = relationship("Part")

    __table_args__ = (
        Index("ix_visit_items_visit", "visit_id"),
        Index("ix_visit_items_part", "part_id"),
        CheckConstraint("quantity_used > 0", name="ck_visit_item_quantity_positive"),
        CheckConstraint("unit_cost >= 0", name="ck_visit_item_cost_positive"),
    )


# ─── 4. Parts ──────────────────────────────────────────────────────────────


class Part(Base):
    __tablename__ = "parts"

    part_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    sku = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)
    unit_cost = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_part_sku_per_tenant"),
        Index("ix_parts_tenant", "tenant_id"),
        CheckConstraint("stock_quantity >= 0", name="ck_part_stock_non_negative"),
        CheckConstraint("unit_cost >= 0", name="ck_part_cost_positive"),
    )


# ─── 5. Stock Movements ────────────────────────────────────────────────────


class StockMovement(Base):
    """Audit trail of every change applied to parts.stock_quantity."""

    __tablename__ = "stock_movements"

    movement_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    part_id = Column(UUID(as_uuid=True), ForeignKey("parts.part_id"), nullable=False)
    visit_id = Column(UUID(as_uuid=True), ForeignKey("maintenance_visits.visit_id"))
    movement_type = Column(String(30), nullable=False)
    quantity_delta = Column(Integer, nullable=False)  # negative = consumed
    stock_after = Column(Integer, nullable=False)
    reason = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_stock_movements_part", "part_id", "created_at"),
        CheckConstraint(_in_list("movement_type", MOVEMENT_TYPES), name="ck_stock_movement_type"),
        CheckConstraint("quantity_delta <> 0", name="ck_stock_movement_nonzero"),
    )
