"""init: wbs items and module permissions

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

# Same semantics as crud.wbs.delete_item, for clients that call the database directly
DELETE_SUBTREE_FN = """
CREATE OR REPLACE FUNCTION delete_wbs_subtree(root_id varchar) RETURNS integer AS $$
DECLARE
    removed integer;
BEGIN
    WITH RECURSIVE subtree(id) AS (
        SELECT id FROM wbs_items WHERE id = root_id
        UNION
        SELECT w.id FROM wbs_items w JOIN subtree s ON w.parent_id = s.id
    )
    DELETE FROM wbs_items WHERE id IN (SELECT id FROM subtree);
    GET DIAGNOSTICS removed = ROW_COUNT;
    RETURN removed;
END;
$$ LANGUAGE plpgsql;
"""

def upgrade():
    op.create_table(
        "wbs_items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("project_id", sa.String(length=36), nullable=False),
        sa.Column("company_id", sa.String(length=36), nullable=False),
        sa.Column("parent_id", sa.String(length=36), sa.ForeignKey("wbs_items.id"), nullable=True),
        sa.Column("wbs_id", sa.String(length=64), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=128), nullable=True),
        sa.Column("priority", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=True),
        sa.Column("health", sa.String(length=32), nullable=True),
        sa.Column("progress_status", sa.String(length=32), nullable=True),
        sa.Column("at_risk", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("assigned_to", sa.String(length=36), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("budgeted_cost", sa.Float(), nullable=True),
        sa.Column("actual_cost", sa.Float(), nullable=True),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("predecessors", sa.JSON(), nullable=True),
        sa.Column("linked_tasks", sa.JSON(), nullable=True),
        sa.Column("is_expanded", sa.JSON(), nullable=True),
        sa.Column("is_task_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("linked_task_id", sa.String(length=36), nullable=True),
        sa.Column("task_conversion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_wbs_items_project_id", "wbs_items", ["project_id"])
    op.create_index("ix_wbs_items_company_id", "wbs_items", ["company_id"])
    op.create_index("ix_wbs_items_parent_id", "wbs_items", ["parent_id"])
    op.create_index("ix_wbs_items_wbs_id", "wbs_items", ["wbs_id"])

    op.create_table(
        "user_module_permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("company_id", sa.String(length=36), nullable=False),
        sa.Column("module_id", sa.String(length=64), nullable=False),
        sa.Column("sub_module_id", sa.String(length=64), nullable=True),
        sa.Column("access_level", sa.String(length=16), nullable=False, server_default="can_view"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "company_id", "module_id", "sub_module_id", name="uq_user_module_permission"),
    )
    op.create_index("ix_user_module_permissions_user_id", "user_module_permissions", ["user_id"])
    op.create_index("ix_user_module_permissions_company_id", "user_module_permissions", ["company_id"])
    op.create_index("ix_user_module_permissions_module_id", "user_module_permissions", ["module_id"])

    if op.get_bind().dialect.name == "postgresql":
        op.execute(DELETE_SUBTREE_FN)

def downgrade():
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP FUNCTION IF EXISTS delete_wbs_subtree(varchar)")
    op.drop_table("user_module_permissions")
    op.drop_table("wbs_items")
