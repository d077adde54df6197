"""Initial kiosk schema: departments, employees, badges, purposes, visits, event logs

Revision ID: 20261017_initial_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
    )
    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="user"),
        sa.Column("pin_hash", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=True),
    )
    op.create_table(
        "badges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("badge_number", sa.String(), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_table(
        "visit_purposes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
    )
    op.create_table(
        "visits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("visitor_name", sa.String(), nullable=False),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("exit_employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("badge_id", sa.Integer(), sa.ForeignKey("badges.id"), nullable=False),
        sa.Column("purpose_id", sa.Integer(), sa.ForeignKey("visit_purposes.id"), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("signature", sa.String(), nullable=True),
        sa.Column("entry_time", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("exit_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_system_exit", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_visits_entry_time", "visits", ["entry_time"])
    op.create_index("ix_visits_exit_time", "visits", ["exit_time"])
    op.create_table(
        "event_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("level", sa.String(), nullable=False, server_default="info"),
        sa.Column("action", sa.String(), nullable=True),
        sa.Column("actor_type", sa.String(), nullable=True),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("actor_name", sa.String(), nullable=True),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("department_name", sa.String(), nullable=True),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=False, server_default="client"),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=True),
    )
    op.create_index("ix_event_logs_event_type", "event_logs", ["event_type"])


def downgrade():
    op.drop_index("ix_event_logs_event_type", table_name="event_logs")
    op.drop_table("event_logs")
    op.drop_index("ix_visits_exit_time", table_name="visits")
    op.drop_index("ix_visits_entry_time", table_name="visits")
    op.drop_table("visits")
    op.drop_table("visit_purposes")
    op.drop_table("badges")
    op.drop_table("employees")
    op.drop_table("departments")
