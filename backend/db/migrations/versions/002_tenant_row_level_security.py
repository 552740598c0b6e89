"""Tenant isolation RLS policies on every maintenance table

Policies read app.current_tenant_id, which api.deps.get_tenant_db sets per
request. RLS is enabled but not forced: the table owner role used by the
Celery workers reads across tenants for beat fan-out.

Revision ID: 002
Revises: 001
Create Date: 2026-03-02
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TENANT_TABLES = [
    "maintenance_contracts",
    "maintenance_visits",
    "maintenance_visit_items",
    "parts",
    "stock_movements",
]


def upgrade() -> None:
    for table in TENANT_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"CREATE POLICY tenant_isolation ON {table} "
            f"USING (tenant_id::text = current_setting('app.current_tenant_id', true))"
        )


def downgrade() -> None:
    for table in TENANT_TABLES:
        op.execute(f"DROP POLICY IF EXISTS tenant_isolation ON {table}")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
