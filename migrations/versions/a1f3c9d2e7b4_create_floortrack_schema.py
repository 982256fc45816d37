"""create_floortrack_schema

Create workflow, location, item, audit and scan tables.

Revision ID: a1f3c9d2e7b4
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1f3c9d2e7b4"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "workflows" not in existing_tables:
        op.create_table(
            "workflows",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("lifecycle_state", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflows_lifecycle_state", "workflows", ["lifecycle_state"])

    if "workflow_stages" not in existing_tables:
        op.create_table(
            "workflow_stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("stage_key", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("estimated_duration", sa.Integer(), nullable=True, comment="minutes"),
            sa.Column("allowed_next_stage_ids", sa.JSON(), nullable=False),
            sa.Column("assigned_location_ids", sa.JSON(), nullable=False),
            sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_id", "stage_key", name="uq_workflow_stage_key"),
        )
        op.create_index("ix_workflow_stages_workflow_id", "workflow_stages", ["workflow_id"])
        op.create_index("ix_workflow_stages_stage_key", "workflow_stages", ["stage_key"])

    if "stage_actions" not in existing_tables:
        op.create_table(
            "stage_actions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("action_key", sa.String(length=64), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("label", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("config", sa.JSON(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["stage_id"], ["workflow_stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stage_actions_stage_id", "stage_actions", ["stage_id"])

    if "locations" not in existing_tables:
        op.create_table(
            "locations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("qr_code", sa.String(length=200), nullable=False),
            sa.Column("capacity", sa.Integer(), nullable=True),
            sa.Column("current_occupancy", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("assigned_stage_id", sa.String(length=64), nullable=True),
            sa.Column("parent_location_id", sa.Integer(), nullable=True),
            sa.Column("lifecycle_state", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("current_occupancy >= 0", name="ck_locations_occupancy_non_negative"),
            sa.CheckConstraint(
                "capacity IS NULL OR current_occupancy <= capacity",
                name="ck_locations_occupancy_within_capacity",
            ),
            sa.ForeignKeyConstraint(["parent_location_id"], ["locations.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_locations_qr_code", "locations", ["qr_code"], unique=True)
        op.create_index("ix_locations_assigned_stage_id", "locations", ["assigned_stage_id"])
        op.create_index("ix_locations_parent_location_id", "locations", ["parent_location_id"])
        op.create_index("ix_locations_lifecycle_state", "locations", ["lifecycle_state"])

    if "items" not in existing_tables:
        op.create_table(
            "items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_code", sa.String(length=100), nullable=False),
            sa.Column("qr_code", sa.String(length=120), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("current_stage_id", sa.String(length=64), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("current_location_id", sa.Integer(), nullable=True),
            sa.Column("assigned_to", sa.String(length=150), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=False),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("final_stage_name", sa.String(length=200), nullable=True),
            sa.Column("is_defective", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("flag_notes", sa.Text(), nullable=True),
            sa.Column("flagged_by", sa.String(length=150), nullable=True),
            sa.Column("flagged_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["current_location_id"], ["locations.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("qr_code"),
        )
        op.create_index("ix_items_item_code", "items", ["item_code"], unique=True)
        op.create_index("ix_items_workflow_id", "items", ["workflow_id"])
        op.create_index("ix_items_current_location_id", "items", ["current_location_id"])
        op.create_index("idx_items_workflow_status", "items", ["workflow_id", "status"])
        op.create_index("idx_items_stage", "items", ["current_stage_id"])

    if "item_history" not in existing_tables:
        op.create_table(
            "item_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column("stage_id", sa.String(length=64), nullable=False),
            sa.Column("stage_name", sa.String(length=200), nullable=True),
            sa.Column("action", sa.String(length=20), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False),
            sa.Column("at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("completed_actions", sa.JSON(), nullable=False),
            sa.ForeignKeyConstraint(["item_id"], ["items.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_item_history_item_id", "item_history", ["item_id"])
        op.create_index("ix_item_history_at", "item_history", ["at"])

    if "completed_items" not in existing_tables:
        op.create_table(
            "completed_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=True),
            sa.Column("item_code", sa.String(length=100), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=True),
            sa.Column("final_stage_id", sa.String(length=64), nullable=False),
            sa.Column("final_stage_name", sa.String(length=200), nullable=True),
            sa.Column("final_location_id", sa.Integer(), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_by", sa.String(length=150), nullable=False),
            sa.Column("completion_notes", sa.Text(), nullable=True),
            sa.Column("is_defective", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("annotations", sa.JSON(), nullable=False),
            sa.ForeignKeyConstraint(["item_id"], ["items.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["final_location_id"], ["locations.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("item_id"),
        )
        op.create_index("ix_completed_items_item_code", "completed_items", ["item_code"])
        op.create_index("ix_completed_items_workflow_id", "completed_items", ["workflow_id"])
        op.create_index("ix_completed_items_completed_at", "completed_items", ["completed_at"])

    if "location_history" not in existing_tables:
        op.create_table(
            "location_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=True),
            sa.Column("item_code", sa.String(length=100), nullable=False),
            sa.Column("from_location_id", sa.Integer(), nullable=True),
            sa.Column("to_location_id", sa.Integer(), nullable=True),
            sa.Column("stage_id", sa.String(length=64), nullable=True),
            sa.Column("moved_by", sa.String(length=150), nullable=False),
            sa.Column("moved_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=False),
            sa.ForeignKeyConstraint(["item_id"], ["items.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["from_location_id"], ["locations.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["to_location_id"], ["locations.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_location_history_item", "location_history", ["item_code"])
        op.create_index("idx_location_history_to", "location_history", ["to_location_id"])
        op.create_index("idx_location_history_moved_by", "location_history", ["moved_by"])
        op.create_index("idx_location_history_moved_at", "location_history", ["moved_at"])

    if "activity_log" not in existing_tables:
        op.create_table(
            "activity_log",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=100), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("details", sa.JSON(), nullable=False),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_activity_entity", "activity_log", ["entity_type", "entity_id"])
        op.create_index("idx_activity_actor", "activity_log", ["actor"])
        op.create_index("idx_activity_ts", "activity_log", ["timestamp"])

    if "scans" not in existing_tables:
        op.create_table(
            "scans",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("qr_data", sa.String(length=300), nullable=False),
            sa.Column("scan_type", sa.String(length=20), nullable=False),
            sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("user_id", sa.String(length=150), nullable=False),
            sa.Column("item_code", sa.String(length=100), nullable=True),
            sa.Column("location_id", sa.Integer(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_scans_user_ts", "scans", ["user_id", "timestamp"])
        op.create_index("idx_scans_item", "scans", ["item_code"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "scans",
        "activity_log",
        "location_history",
        "completed_items",
        "item_history",
        "items",
        "locations",
        "stage_actions",
        "workflow_stages",
        "workflows",
    ):
        if table in existing_tables:
            op.drop_table(table)
