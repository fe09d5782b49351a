"""Add approval routing rules and change approval instances

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-13

approval_routing holds the administrator-managed rules; change_approvals holds
one row per approver, level and submission cycle of a change.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, Sequence[str], None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "approval_routing",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("product_id", sa.Integer()),
        sa.Column("group_id", sa.Integer()),
        sa.Column("risk_level", sa.String(20), nullable=False),
        sa.Column("approval_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("approver_id", sa.Integer(), nullable=False),
        sa.Column("require_all_approvals", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_approval_routing"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_approval_routing_product_id_products",
                                ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], name="fk_approval_routing_group_id_groups",
                                ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approver_id"], ["users.id"], name="fk_approval_routing_approver_id_users",
                                ondelete="CASCADE"),
        sa.CheckConstraint("(product_id IS NULL) <> (group_id IS NULL)",
                           name="ck_approval_routing_product_xor_group"),
        sa.CheckConstraint("approval_level >= 1", name="ck_approval_routing_level_positive"),
    )
    op.create_index("ix_approval_routing_product_id", "approval_routing", ["product_id"])
    op.create_index("ix_approval_routing_group_id", "approval_routing", ["group_id"])
    op.create_index("ix_approval_routing_risk_level", "approval_routing", ["risk_level"])

    op.create_table(
        "change_approvals",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("change_id", sa.Integer(), nullable=False),
        sa.Column("approver_id", sa.Integer()),
        sa.Column("approval_level", sa.Integer(), nullable=False),
        sa.Column("cycle", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("require_all_approvals", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("comments", sa.Text()),
        sa.Column("approved_at", sa.DateTime()),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_change_approvals"),
        sa.ForeignKeyConstraint(["change_id"], ["changes.id"], name="fk_change_approvals_change_id_changes",
                                ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approver_id"], ["users.id"], name="fk_change_approvals_approver_id_users",
                                ondelete="SET NULL"),
    )
    op.create_index("ix_change_approvals_change_id", "change_approvals", ["change_id"])
    op.create_index("ix_change_approvals_approver_id", "change_approvals", ["approver_id"])
    op.create_index("ix_change_approvals_status", "change_approvals", ["status"])
    op.create_index(
        "ix_change_approvals_change_cycle_level",
        "change_approvals",
        ["change_id", "cycle", "approval_level"],
    )


def downgrade() -> None:
    op.drop_index("ix_change_approvals_change_cycle_level", table_name="change_approvals")
    op.drop_table("change_approvals")
    op.drop_table("approval_routing")
