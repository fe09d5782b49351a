"""Default role definitions for the service desk.

1. Admin - Full access, may override change statuses (never into approved)
2. Manager - Approves, rejects and closes changes; maintains routing
3. Agent - Implements approved changes and performs rollbacks
4. Requester - Raises and revises own change requests
"""

from typing import Dict, List
from .permissions import Resource, Action, Permission


def _build_permissions(*perms: tuple) -> List[str]:
    """Build permission strings from (Resource, Action) tuples."""
    return [str(Permission(r, a)) for r, a in perms]


# Admin: Full access to everything
ADMIN_PERMISSIONS = [
    "*:*"
]

MANAGER_PERMISSIONS = _build_permissions(
    (Resource.CHANGES, Action.CREATE),
    (Resource.CHANGES, Action.READ),
    (Resource.CHANGES, Action.UPDATE),
    (Resource.CHANGES, Action.LIST),
    (Resource.CHANGES, Action.REJECT),
    (Resource.CHANGES, Action.CLOSE),

    (Resource.APPROVALS, Action.READ),
    (Resource.APPROVALS, Action.LIST),
    (Resource.APPROVALS, Action.APPROVE),

    (Resource.APPROVAL_ROUTING, Action.CREATE),
    (Resource.APPROVAL_ROUTING, Action.READ),
    (Resource.APPROVAL_ROUTING, Action.UPDATE),
    (Resource.APPROVAL_ROUTING, Action.DELETE),
    (Resource.APPROVAL_ROUTING, Action.LIST),

    (Resource.PRODUCTS, Action.READ),
    (Resource.PRODUCTS, Action.LIST),
    (Resource.GROUPS, Action.READ),
    (Resource.GROUPS, Action.LIST),

    (Resource.AUDIT_LOGS, Action.READ),
    (Resource.AUDIT_LOGS, Action.LIST),
)

AGENT_PERMISSIONS = _build_permissions(
    (Resource.CHANGES, Action.CREATE),
    (Resource.CHANGES, Action.READ),
    (Resource.CHANGES, Action.UPDATE),
    (Resource.CHANGES, Action.LIST),
    (Resource.CHANGES, Action.IMPLEMENT),
    (Resource.CHANGES, Action.ROLLBACK),

    # Agents can be configured as approvers too
    (Resource.APPROVALS, Action.READ),
    (Resource.APPROVALS, Action.LIST),
    (Resource.APPROVALS, Action.APPROVE),

    (Resource.APPROVAL_ROUTING, Action.READ),
    (Resource.APPROVAL_ROUTING, Action.LIST),

    (Resource.PRODUCTS, Action.READ),
    (Resource.PRODUCTS, Action.LIST),
    (Resource.GROUPS, Action.READ),
    (Resource.GROUPS, Action.LIST),
)

REQUESTER_PERMISSIONS = _build_permissions(
    (Resource.CHANGES, Action.CREATE),
    (Resource.CHANGES, Action.READ),
    (Resource.CHANGES, Action.UPDATE),
    (Resource.CHANGES, Action.LIST),

    (Resource.APPROVALS, Action.READ),
    (Resource.APPROVALS, Action.LIST),

    (Resource.PRODUCTS, Action.READ),
    (Resource.PRODUCTS, Action.LIST),
)


DEFAULT_ROLES: Dict[str, dict] = {
    "admin": {
        "name": "Admin",
        "description": "Full system access with all permissions",
        "permissions": ADMIN_PERMISSIONS,
        "is_system": True,
    },
    "manager": {
        "name": "Manager",
        "description": "Approves, rejects and closes changes; maintains approval routing",
        "permissions": MANAGER_PERMISSIONS,
        "is_system": True,
    },
    "agent": {
        "name": "Agent",
        "description": "Implements approved changes and performs rollbacks",
        "permissions": AGENT_PERMISSIONS,
        "is_system": True,
    },
    "requester": {
        "name": "Requester",
        "description": "Raises and revises change requests",
        "permissions": REQUESTER_PERMISSIONS,
        "is_system": True,
    },
}


def get_default_role_permissions(role_key: str) -> List[str]:
    """Get permissions list for a default role."""
    role = DEFAULT_ROLES.get(role_key)
    if not role:
        raise ValueError(f"Unknown default role: {role_key}")
    return role["permissions"]
