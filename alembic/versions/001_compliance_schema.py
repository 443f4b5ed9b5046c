"""001 – Compliance engine schema.

Creates the five ingestion staging tables filled by the external ETL
(org_units, employees, presence_events, leave_records, holidays) and the
compliance_snapshots table written after each successful recompute.

Staging tables use surrogate keys and nullable columns: malformed rows are
counted and dropped by the ingestion pass, not rejected by the database.

Revision ID: 001_compliance_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000+00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# Revision identifiers
revision = "001_compliance_schema"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    # ══════════════════════════════════════════════════════════════════
    # 1. Ingestion staging tables
    # ══════════════════════════════════════════════════════════════════
    op.create_table(
        "org_units",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("node_id", sa.String(64)),
        sa.Column("parent_id", sa.String(64)),
        sa.Column("level", sa.String(20)),
        sa.Column("name", sa.String(200)),
        sa.Column("code", sa.String(20)),
    )
    op.create_index("ix_org_units_node_id", "org_units", ["node_id"])

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("employee_id", sa.String(64)),
        sa.Column("manager_id", sa.String(64)),
        sa.Column("location", sa.String(20)),
        sa.Column("hire_date", sa.Date),
        sa.Column("termination_date", sa.Date),
    )
    op.create_index("ix_employees_employee_id", "employees", ["employee_id"])

    op.create_table(
        "presence_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("employee_id", sa.String(64)),
        sa.Column("occurred_at", sa.DateTime(timezone=True)),
        sa.Column("location", sa.String(20)),
    )
    op.create_index("ix_presence_events_employee_id", "presence_events", ["employee_id"])

    op.create_table(
        "leave_records",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("employee_id", sa.String(64)),
        sa.Column("leave_date", sa.Date),
        sa.Column("status", sa.String(20), server_default="approved"),
    )
    op.create_index("ix_leave_records_employee_id", "leave_records", ["employee_id"])

    op.create_table(
        "holidays",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("scope", sa.String(20)),
        sa.Column("holiday_date", sa.Date),
        sa.Column("name", sa.String(200)),
    )
    op.create_index("ix_holidays_scope", "holidays", ["scope"])

    # ══════════════════════════════════════════════════════════════════
    # 2. Published snapshots
    # ══════════════════════════════════════════════════════════════════
    op.create_table(
        "compliance_snapshots",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("version", sa.DateTime(timezone=True), nullable=False, unique=True),
        sa.Column("digest", sa.String(64), nullable=False),
        sa.Column("coverage_start", sa.Date),
        sa.Column("coverage_end", sa.Date),
        sa.Column("ingestion_summary", JSONType, nullable=False),
        sa.Column("payload", JSONType, nullable=False),
        sa.Column("inputs", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("compliance_snapshots")
    for name in ("holidays", "leave_records", "presence_events", "employees", "org_units"):
        op.drop_table(name)
