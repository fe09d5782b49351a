"""Seed default roles

Revision ID: 0003
Revises: 0002
Create Date: 2026-10-14

Creates the 4 default roles (Admin, Manager, Agent, Requester).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0003"
down_revision: Union[str, Sequence[str], None] = "0002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Snapshot of the default roles at the time of this migration
DEFAULT_ROLES = {
    "Admin": ["*:*"],
    "Manager": [
        "changes:create", "changes:read", "changes:update", "changes:list", "changes:reject", "changes:close",
        "approvals:read", "approvals:list", "approvals:approve",
        "approval_routing:create", "approval_routing:read", "approval_routing:update",
        "approval_routing:delete", "approval_routing:list",
        "products:read", "products:list", "groups:read", "groups:list",
        "audit_logs:read", "audit_logs:list",
    ],
    "Agent": [
        "changes:create", "changes:read", "changes:update", "changes:list",
        "changes:implement", "changes:rollback",
        "approvals:read", "approvals:list", "approvals:approve",
        "approval_routing:read", "approval_routing:list",
        "products:read", "products:list", "groups:read", "groups:list",
    ],
    "Requester": [
        "changes:create", "changes:read", "changes:update", "changes:list",
        "approvals:read", "approvals:list",
        "products:read", "products:list",
    ],
}

roles_table = sa.table(
    "roles",
    sa.column("name", sa.String),
    sa.column("permissions", sa.JSON),
    sa.column("is_system", sa.Boolean),
)


def upgrade() -> None:
    """Insert the default roles that do not exist yet."""
    conn = op.get_bind()
    existing = {row[0] for row in conn.execute(sa.text("SELECT name FROM roles"))}

    rows = [
        {"name": name, "permissions": permissions, "is_system": True}
        for name, permissions in DEFAULT_ROLES.items()
        if name not in existing
    ]
    if rows:
        op.bulk_insert(roles_table, rows)


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(
        sa.text("DELETE FROM roles WHERE is_system = :is_system AND name IN :names").bindparams(
            sa.bindparam("names", expanding=True)
        ),
        {"is_system": True, "names": list(DEFAULT_ROLES)},
    )
