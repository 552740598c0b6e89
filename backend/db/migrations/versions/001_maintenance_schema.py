"""
Maintenance schema - contracts, visits, visit items, parts, stock movements

Revision ID: 001
Revises: None
Create Date: 2026-03-02
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

VISIT_STATUSES = "('scheduled', 'rescheduled', 'in_progress', 'completed', 'failed', 'no_access', 'cancelled', 'missed')"


def upgrade() -> None:
    # 1. Maintenance Contracts
    op.create_table(
        "maintenance_contracts",
        sa.Column("contract_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("branch_id", UUID(as_uuid=True), nullable=False),
        sa.Column("customer_name", sa.String(255)),
        sa.Column("assigned_technician_id", UUID(as_uuid=True)),
        sa.Column("frequency", sa.String(20), nullable=False, server_default="monthly"),
        sa.Column("frequency_value", sa.Integer),
        sa.Column("frequency_unit", sa.String(10)),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_contract_date_range"),
        sa.CheckConstraint(
            "status IN ('draft', 'active', 'paused', 'completed', 'cancelled')",
            name="ck_contract_status",
        ),
        sa.CheckConstraint(
            "frequency IN ('weekly', 'monthly', 'quarterly', 'semi_annual', 'annual', 'custom')",
            name="ck_contract_frequency",
        ),
        sa.CheckConstraint(
            "frequency_value IS NULL OR frequency_value > 0",
            name="ck_contract_frequency_value_positive",
        ),
    )
    op.create_index("ix_contracts_tenant_status", "maintenance_contracts", ["tenant_id", "status"])
    op.create_index("ix_contracts_branch", "maintenance_contracts", ["tenant_id", "branch_id"])

    # 2. Parts
    op.create_table(
        "parts",
        sa.Column("part_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("stock_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "sku", name="uq_part_sku_per_tenant"),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_part_stock_non_negative"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_part_cost_positive"),
    )
    op.create_index("ix_parts_tenant", "parts", ["tenant_id"])

    # 3. Maintenance Visits
    op.create_table(
        "maintenance_visits",
        sa.Column("visit_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "contract_id",
            UUID(as_uuid=True),
            sa.ForeignKey("maintenance_contracts.contract_id"),
            nullable=False,
        ),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("branch_id", UUID(as_uuid=True), nullable=False),
        sa.Column("assigned_technician_id", UUID(as_uuid=True)),
        sa.Column("slot_date", sa.Date, nullable=False),
        sa.Column("scheduled_date", sa.Date, nullable=False),
        sa.Column("rescheduled_from", sa.Date),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("started_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("cancelled_at", sa.DateTime),
        sa.Column("missed_at", sa.DateTime),
        sa.Column("total_cost", sa.Float),
        sa.Column("notes", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(f"status IN {VISIT_STATUSES}", name="ck_visit_status"),
    )
    op.create_index(
        "uq_visit_contract_date_active",
        "maintenance_visits",
        ["contract_id", "scheduled_date"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
    )
    op.create_index("ix_visits_contract_slot", "maintenance_visits", ["contract_id", "slot_date"])
    op.create_index("ix_visits_tenant_status_date", "maintenance_visits", ["tenant_id", "status", "scheduled_date"])
    op.create_index("ix_visits_technician", "maintenance_visits", ["assigned_technician_id", "scheduled_date"])

    # 4. Visit Items
    op.create_table(
        "maintenance_visit_items",
        sa.Column("item_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("visit_id", UUID(as_uuid=True), sa.ForeignKey("maintenance_visits.visit_id"), nullable=False),
        sa.Column("part_id", UUID(as_uuid=True), sa.ForeignKey("parts.part_id"), nullable=False),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("quantity_used", sa.Integer, nullable=False),
        sa.Column("unit_cost", sa.Float, nullable=False),
        sa.Column("total_cost", sa.Float, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity_used > 0", name="ck_visit_item_quantity_positive"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_visit_item_cost_positive"),
    )
    op.create_index("ix_visit_items_visit", "maintenance_visit_items", ["visit_id"])
    op.create_index("ix_visit_items_part", "maintenance_visit_items", ["part_id"])

    # 5. Stock Movements
    op.create_table(
        "stock_movements",
        sa.Column("movement_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("part_id", UUID(as_uuid=True), sa.ForeignKey("parts.part_id"), nullable=False),
        sa.Column("visit_id", UUID(as_uuid=True), sa.ForeignKey("maintenance_visits.visit_id")),
        sa.Column("movement_type", sa.String(30), nullable=False),
        sa.Column("quantity_delta", sa.Integer, nullable=False),
        sa.Column("stock_after", sa.Integer, nullable=False),
        sa.Column("reason", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "movement_type IN ('visit_consumption', 'replenishment', 'adjustment')",
            name="ck_stock_movement_type",
        ),
        sa.CheckConstraint("quantity_delta <> 0", name="ck_stock_movement_nonzero"),
    )
    op.create_index("ix_stock_movements_part", "stock_movements", ["part_id", "created_at"])


def downgrade() -> None:
    op.drop_table("stock_movements")
    op.drop_table("maintenance_visit_items")
    op.drop_table("maintenance_visits")
    op.drop_table("parts")
    op.drop_table("maintenance_contracts")
