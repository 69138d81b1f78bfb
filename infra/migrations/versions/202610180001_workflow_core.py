"""workflow core tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610180001"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_SLOT_WHERE = "status IN ('PENDING', 'COMPLETED')"


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_ts", "events", ["ts"])

    op.create_table(
        "roles",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_roles_name", "roles", ["name"], unique=True)
    op.create_index("ix_roles_created_at", "roles", ["created_at"])

    op.create_table(
        "clients",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_clients_username", "clients", ["username"])
    op.create_index("ix_clients_email", "clients", ["email"], unique=True)
    op.create_index("ix_clients_created_at", "clients", ["created_at"])

    op.create_table(
        "employees",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_employees_username", "employees", ["username"])
    op.create_index("ix_employees_email", "employees", ["email"], unique=True)
    op.create_index("ix_employees_role_id", "employees", ["role_id"])
    op.create_index("ix_employees_created_at", "employees", ["created_at"])

    op.create_table(
        "procedure_templates",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_procedure_templates_name", "procedure_templates", ["name"], unique=True)
    op.create_index("ix_procedure_templates_created_at", "procedure_templates", ["created_at"])

    op.create_table(
        "task_templates",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("procedure_template_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("xp_base", sa.Integer(), nullable=False),
        sa.Column("required_role_id", sa.String(), nullable=False),
        sa.Column("estimated_duration_days", sa.Integer(), nullable=False),
        sa.Column("difficulty", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["procedure_template_id"], ["procedure_templates.id"]),
        sa.ForeignKeyConstraint(["required_role_id"], ["roles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("procedure_template_id", "name", name="uq_task_templates_procedure_name"),
    )
    op.create_index("ix_task_templates_procedure_template_id", "task_templates", ["procedure_template_id"])
    op.create_index("ix_task_templates_name", "task_templates", ["name"])
    op.create_index("ix_task_templates_required_role_id", "task_templates", ["required_role_id"])
    op.create_index("ix_task_templates_created_at", "task_templates", ["created_at"])

    op.create_table(
        "procedure_instances",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("template_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["template_id"], ["procedure_templates.id"]),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("template_id", "client_id", name="uq_procedure_instances_template_client"),
    )
    op.create_index("ix_procedure_instances_template_id", "procedure_instances", ["template_id"])
    op.create_index("ix_procedure_instances_client_id", "procedure_instances", ["client_id"])
    op.create_index("ix_procedure_instances_status", "procedure_instances", ["status"])
    op.create_index("ix_procedure_instances_start_date", "procedure_instances", ["start_date"])
    op.create_index("ix_procedure_instances_end_date", "procedure_instances", ["end_date"])
    op.create_index("ix_procedure_instances_client_status", "procedure_instances", ["client_id", "status"])

    op.create_table(
        "task_instances",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("procedure_instance_id", sa.String(), nullable=False),
        sa.Column("task_template_id", sa.String(), nullable=False),
        sa.Column("employee_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("document_ref", sa.String(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["procedure_instance_id"], ["procedure_instances.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["task_template_id"], ["task_templates.id"]),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_instances_procedure_instance_id", "task_instances", ["procedure_instance_id"])
    op.create_index("ix_task_instances_task_template_id", "task_instances", ["task_template_id"])
    op.create_index("ix_task_instances_employee_id", "task_instances", ["employee_id"])
    op.create_index("ix_task_instances_status", "task_instances", ["status"])
    op.create_index("ix_task_instances_start_date", "task_instances", ["start_date"])
    op.create_index("ix_task_instances_end_date", "task_instances", ["end_date"])
    op.create_index("ix_task_instances_employee_status", "task_instances", ["employee_id", "status"])
    op.create_index(
        "uq_task_instances_active_slot",
        "task_instances",
        ["procedure_instance_id", "task_template_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_SLOT_WHERE),
        sqlite_where=sa.text(ACTIVE_SLOT_WHERE),
    )

    op.create_table(
        "gamification_profiles",
        sa.Column("employee_id", sa.String(), nullable=False),
        sa.Column("xp_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_tasks_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("xp_total >= 0", name="ck_gamification_profiles_xp_total"),
        sa.CheckConstraint(
            "completed_tasks_count >= 0",
            name="ck_gamification_profiles_completed_tasks_count",
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("employee_id"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("recipient_id", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])
    op.create_index(
        "ix_notifications_recipient_created",
        "notifications",
        ["recipient_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_recipient_created", table_name="notifications")
    op.drop_index("ix_notifications_created_at", table_name="notifications")
    op.drop_index("ix_notifications_is_read", table_name="notifications")
    op.drop_index("ix_notifications_recipient_id", table_name="notifications")
    op.drop_table("notifications")

    op.drop_table("gamification_profiles")

    op.drop_index("uq_task_instances_active_slot", table_name="task_instances")
    op.drop_index("ix_task_instances_employee_status", table_name="task_instances")
    op.drop_index("ix_task_instances_end_date", table_name="task_instances")
    op.drop_index("ix_task_instances_start_date", table_name="task_instances")
    op.drop_index("ix_task_instances_status", table_name="task_instances")
    op.drop_index("ix_task_instances_employee_id", table_name="task_instances")
    op.drop_index("ix_task_instances_task_template_id", table_name="task_instances")
    op.drop_index("ix_task_instances_procedure_instance_id", table_name="task_instances")
    op.drop_table("task_instances")

    op.drop_index("ix_procedure_instances_client_status", table_name="procedure_instances")
    op.drop_index("ix_procedure_instances_end_date", table_name="procedure_instances")
    op.drop_index("ix_procedure_instances_start_date", table_name="procedure_instances")
    op.drop_index("ix_procedure_instances_status", table_name="procedure_instances")
    op.drop_index("ix_procedure_instances_client_id", table_name="procedure_instances")
    op.drop_index("ix_procedure_instances_template_id", table_name="procedure_instances")
    op.drop_table("procedure_instances")

    op.drop_index("ix_task_templates_created_at", table_name="task_templates")
    op.drop_index("ix_task_templates_required_role_id", table_name="task_templates")
    op.drop_index("ix_task_templates_name", table_name="task_templates")
    op.drop_index("ix_task_templates_procedure_template_id", table_name="task_templates")
    op.drop_table("task_templates")

    op.drop_index("ix_procedure_templates_created_at", table_name="procedure_templates")
    op.drop_index("ix_procedure_templates_name", table_name="procedure_templates")
    op.drop_table("procedure_templates")

    op.drop_index("ix_employees_created_at", table_name="employees")
    op.drop_index("ix_employees_role_id", table_name="employees")
    op.drop_index("ix_employees_email", table_name="employees")
    op.drop_index("ix_employees_username", table_name="employees")
    op.drop_table("employees")

    op.drop_index("ix_clients_created_at", table_name="clients")
    op.drop_index("ix_clients_email", table_name="clients")
    op.drop_index("ix_clients_username", table_name="clients")
    op.drop_table("clients")

    op.drop_index("ix_roles_created_at", table_name="roles")
    op.drop_index("ix_roles_name", table_name="roles")
    op.drop_table("roles")

    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
