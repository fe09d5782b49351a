"""Initial schema: roles, users, products, groups, changes, change_history, audit_logs

Revision ID: 0001
Revises: None
Create Date: 2026-10-12

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all core tables."""

    # --- roles (no FK deps) ---
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("is_system", sa.Boolean(), server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_roles"),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )

    # --- users (FK -> roles) ---
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], name="fk_users_role_id_roles"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    # --- products, groups (no FK deps) ---
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(100)),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_products"),
        sa.UniqueConstraint("name", name="uq_products_name"),
    )
    op.create_index("ix_products_name", "products", ["name"])

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.UniqueConstraint("name", name="uq_groups_name"),
    )
    op.create_index("ix_groups_name", "groups", ["name"])

    # --- group_members (FK -> groups, users) ---
    op.create_table(
        "group_members",
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("group_id", "user_id", name="pk_group_members"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], name="fk_group_members_group_id_groups",
                                ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_group_members_user_id_users",
                                ondelete="CASCADE"),
    )

    # --- changes (FK -> products, groups, users) ---
    op.create_table(
        "changes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("rollback_plan", sa.Text()),
        sa.Column("category", sa.String(50), nullable=False, server_default="system"),
        sa.Column("priority", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("risk_level", sa.String(20), nullable=False),
        sa.Column("change_type", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("product_id", sa.Integer()),
        sa.Column("group_id", sa.Integer()),
        sa.Column("status", sa.String(20), nullable=False, server_default="submitted"),
        sa.Column("approval_cycle", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requested_by", sa.Integer()),
        sa.Column("approved_by", sa.String(255)),
        sa.Column("implemented_by", sa.Integer()),
        sa.Column("planned_date", sa.DateTime()),
        sa.Column("start_date", sa.DateTime()),
        sa.Column("end_date", sa.DateTime()),
        sa.Column("completed_date", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_changes"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_changes_product_id_products",
                                ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], name="fk_changes_group_id_groups",
                                ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["requested_by"], ["users.id"], name="fk_changes_requested_by_users",
                                ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["implemented_by"], ["users.id"], name="fk_changes_implemented_by_users",
                                ondelete="SET NULL"),
    )
    op.create_index("ix_changes_status", "changes", ["status"])
    op.create_index("ix_changes_risk_level", "changes", ["risk_level"])
    op.create_index("ix_changes_product_id", "changes", ["product_id"])
    op.create_index("ix_changes_group_id", "changes", ["group_id"])
    op.create_index("ix_changes_requested_by", "changes", ["requested_by"])
    op.create_index("ix_changes_created_at", "changes", ["created_at"])

    # --- change_history (FK -> changes, users) ---
    op.create_table(
        "change_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("change_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("from_status", sa.String(20)),
        sa.Column("to_status", sa.String(20)),
        sa.Column("user_id", sa.Integer()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_change_history"),
        sa.ForeignKeyConstraint(["change_id"], ["changes.id"], name="fk_change_history_change_id_changes",
                                ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_change_history_user_id_users",
                                ondelete="SET NULL"),
    )
    op.create_index("ix_change_history_change_id", "change_history", ["change_id"])
    op.create_index("ix_change_history_created_at", "change_history", ["created_at"])

    # --- audit_logs (FK -> users) ---
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer()),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource_type", sa.String(100), nullable=False),
        sa.Column("resource_id", sa.Integer()),
        sa.Column("old_values", sa.JSON()),
        sa.Column("new_values", sa.JSON()),
        sa.Column("details", sa.JSON()),
        sa.Column("severity", sa.String(20), nullable=False, server_default="info"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_audit_logs_user_id_users",
                                ondelete="SET NULL"),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_resource_type", "audit_logs", ["resource_type"])
    op.create_index("ix_audit_logs_resource_id", "audit_logs", ["resource_id"])
    op.create_index("ix_audit_logs_severity", "audit_logs", ["severity"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    """Drop all core tables in reverse dependency order."""
    op.drop_table("audit_logs")
    op.drop_table("change_history")
    op.drop_table("changes")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("products")
    op.drop_table("users")
    op.drop_table("roles")
