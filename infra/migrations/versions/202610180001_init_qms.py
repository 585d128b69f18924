"""init qms tables

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

_INDEXES: list[tuple[str, list[str]]] = [
    ("events", ["event_type"]),
    ("events", ["department_id"]),
    ("events", ["ts"]),
    ("events", ["actor_id"]),
    ("events", ["correlation_id"]),
    ("audit_logs", ["actor_id"]),
    ("audit_logs", ["department_id"]),
    ("audit_logs", ["action"]),
    ("audit_logs", ["entity_type"]),
    ("audit_logs", ["entity_id"]),
    ("audit_logs", ["ts"]),
    ("departments", ["created_at"]),
    ("asset_types", ["department_id"]),
    ("asset_types", ["name"]),
    ("asset_types", ["created_at"]),
    ("assets", ["asset_type_id"]),
    ("assets", ["status"]),
    ("assets", ["created_at"]),
    ("document_types", ["name"]),
    ("document_types", ["created_at"]),
    ("maintenance_schedules", ["asset_id"]),
    ("maintenance_schedules", ["document_type_id"]),
    ("maintenance_schedules", ["frequency"]),
    ("maintenance_schedules", ["next_due"]),
    ("maintenance_schedules", ["is_active"]),
    ("maintenance_schedules", ["created_at"]),
    ("maintenance_schedules", ["updated_at"]),
    ("checklists", ["asset_id"]),
    ("checklists", ["document_type_id"]),
    ("checklists", ["status"]),
    ("checklists", ["created_by"]),
    ("checklists", ["created_at"]),
    ("checklist_items", ["checklist_id"]),
    ("checklist_items", ["result"]),
    ("maintenance_records", ["asset_id"]),
    ("maintenance_records", ["schedule_id"]),
    ("maintenance_records", ["checklist_id"]),
    ("maintenance_records", ["maintenance_type"]),
    ("maintenance_records", ["performed_by"]),
    ("maintenance_records", ["status"]),
    ("maintenance_records", ["next_maintenance_date"]),
    ("maintenance_records", ["created_at"]),
    ("maintenance_records", ["updated_at"]),
    ("ncrs", ["checklist_item_id"]),
    ("ncrs", ["asset_id"]),
    ("ncrs", ["department_id"]),
    ("ncrs", ["raised_by"]),
    ("ncrs", ["assigned_to"]),
    ("ncrs", ["status"]),
    ("ncrs", ["severity"]),
    ("ncrs", ["due_date"]),
    ("ncrs", ["created_at"]),
    ("ncrs", ["updated_at"]),
    ("ncr_actions", ["ncr_id"]),
    ("ncr_actions", ["action_type"]),
    ("ncr_actions", ["assigned_to"]),
    ("ncr_actions", ["due_date"]),
    ("ncr_actions", ["status"]),
    ("ncr_actions", ["created_by"]),
    ("ncr_actions", ["created_at"]),
    ("ncr_actions", ["updated_at"]),
]


def _index_name(table: str, columns: list[str]) -> str:
    return f"ix_{table}_{'_'.join(columns)}"


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("department_id", sa.String(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("department_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=True),
        sa.Column("entity_id", sa.String(), nullable=True),
        sa.Column("method", sa.String(), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "departments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_departments_name", "departments", ["name"], unique=True)
    op.create_table(
        "asset_types",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("department_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("department_id", "name", name="uq_asset_types_department_name"),
    )
    op.create_table(
        "assets",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("asset_type_id", sa.String(), nullable=False),
        sa.Column("asset_tag", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["asset_type_id"], ["asset_types.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_assets_asset_tag", "assets", ["asset_tag"], unique=True)
    op.create_table(
        "document_types",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "maintenance_schedules",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.Column("document_type_id", sa.String(), nullable=False),
        sa.Column("frequency", sa.String(), nullable=False),
        sa.Column("frequency_value", sa.Integer(), nullable=False),
        sa.Column("next_due", sa.Date(), nullable=True),
        sa.Column("last_done", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"]),
        sa.ForeignKeyConstraint(["document_type_id"], ["document_types.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_maintenance_schedules_active_asset_document",
        "maintenance_schedules",
        ["asset_id", "document_type_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )
    op.create_index(
        "ix_maintenance_schedules_active_next_due",
        "maintenance_schedules",
        ["is_active", "next_due"],
    )
    op.create_table(
        "checklists",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.Column("document_type_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"]),
        sa.ForeignKeyConstraint(["document_type_id"], ["document_types.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_checklists_asset_status", "checklists", ["asset_id", "status"])
    op.create_table(
        "checklist_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("checklist_id", sa.String(), nullable=False),
        sa.Column("question", sa.String(), nullable=False),
        sa.Column("result", sa.String(), nullable=False),
        sa.Column("remarks", sa.String(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("checked_by", sa.String(), nullable=True),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["checklist_id"], ["checklists.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_checklist_items_result_checked_at", "checklist_items", ["result", "checked_at"])
    op.create_table(
        "maintenance_records",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.Column("schedule_id", sa.String(), nullable=True),
        sa.Column("checklist_id", sa.String(), nullable=True),
        sa.Column("maintenance_type", sa.String(), nullable=False),
        sa.Column("performed_by", sa.String(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("findings", sa.String(), nullable=True),
        sa.Column("parts_used", sa.String(), nullable=True),
        sa.Column("cost", sa.Float(), nullable=True),
        sa.Column("next_maintenance_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"]),
        sa.ForeignKeyConstraint(["schedule_id"], ["maintenance_schedules.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["checklist_id"], ["checklists.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "ncrs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("ncr_number", sa.String(length=20), nullable=False),
        sa.Column("checklist_item_id", sa.String(), nullable=True),
        sa.Column("asset_id", sa.String(), nullable=True),
        sa.Column("department_id", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("raised_by", sa.String(), nullable=False),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("root_cause", sa.String(), nullable=True),
        sa.Column("corrective_action", sa.String(), nullable=True),
        sa.Column("preventive_action", sa.String(), nullable=True),
        sa.Column("evidence", sa.String(), nullable=True),
        sa.Column("completed_date", sa.Date(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["checklist_item_id"], ["checklist_items.id"]),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"]),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ncrs_ncr_number", "ncrs", ["ncr_number"], unique=True)
    op.create_index("ix_ncrs_status_severity", "ncrs", ["status", "severity"])
    op.create_table(
        "ncr_actions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("ncr_id", sa.String(), nullable=False),
        sa.Column("action_type", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("completed_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("evidence", sa.String(length=255), nullable=True),
        sa.Column("remarks", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["ncr_id"], ["ncrs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    for table, columns in _INDEXES:
        op.create_index(_index_name(table, columns), table, columns)


def downgrade() -> None:
    for table, columns in reversed(_INDEXES):
        op.drop_index(_index_name(table, columns), table_name=table)

    op.drop_table("ncr_actions")
    op.drop_index("ix_ncrs_status_severity", table_name="ncrs")
    op.drop_index("ix_ncrs_ncr_number", table_name="ncrs")
    op.drop_table("ncrs")
    op.drop_table("maintenance_records")
    op.drop_index("ix_checklist_items_result_checked_at", table_name="checklist_items")
    op.drop_table("checklist_items")
    op.drop_index("ix_checklists_asset_status", table_name="checklists")
    op.drop_table("checklists")
    op.drop_index("ix_maintenance_schedules_active_next_due", table_name="maintenance_schedules")
    op.drop_index("uq_maintenance_schedules_active_asset_document", table_name="maintenance_schedules")
    op.drop_table("maintenance_schedules")
    op.drop_table("document_types")
    op.drop_index("ix_assets_asset_tag", table_name="assets")
    op.drop_table("assets")
    op.drop_table("asset_types")
    op.drop_index("ix_departments_name", table_name="departments")
    op.drop_table("departments")
    op.drop_table("audit_logs")
    op.drop_table("events")
