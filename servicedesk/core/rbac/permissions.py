"""Permission model for service desk RBAC.

Permission string format: "resource:action"
Examples:
  - changes:create
  - changes:implement
  - approval_routing:update
  - audit_logs:read
"""

from enum import Enum
from typing import NamedTuple, FrozenSet


class Resource(str, Enum):
    """Resources that can be protected by permissions."""

    # Change management
    CHANGES = "changes"                     # Change requests and their lifecycle
    APPROVALS = "approvals"                 # Approval instances and decisions
    APPROVAL_ROUTING = "approval_routing"   # Routing rule configuration

    # Catalog and people
    PRODUCTS = "products"
    GROUPS = "groups"
    USERS = "users"
    ROLES = "roles"

    # Audit
    AUDIT_LOGS = "audit_logs"


class Action(str, Enum):
    """Actions that can be performed on resources."""

    # Standard CRUD actions
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"

    # Change lifecycle actions
    APPROVE = "approve"        # Submit approval decisions
    REJECT = "reject"          # Reject a change without per-level approval
    IMPLEMENT = "implement"    # Drive approved -> in-progress -> testing -> completed/failed
    ROLLBACK = "rollback"      # failed -> rollback
    CLOSE = "close"            # Close rejected/failed/rolled-back changes
    OVERRIDE = "override"      # Move a change to any status except approved
    MANAGE = "manage"


class Permission(NamedTuple):
    """A permission is a combination of resource and action."""
    resource: Resource
    action: Action

    def __str__(self) -> str:
        return f"{self.resource.value}:{self.action.value}"

    @classmethod
    def from_string(cls, perm_str: str) -> "Permission":
        """Parse a permission string like 'changes:read'."""
        parts = perm_str.split(":")
        if len(parts) != 2:
            raise ValueError(f"Invalid permission format: {perm_str}")
        return cls(Resource(parts[0]), Action(parts[1]))


# Maps each resource to its valid actions
PERMISSION_MATRIX: dict[Resource, FrozenSet[Action]] = {
    Resource.CHANGES: frozenset([
        Action.CREATE, Action.READ, Action.UPDATE, Action.LIST,
        Action.REJECT, Action.IMPLEMENT, Action.ROLLBACK, Action.CLOSE, Action.OVERRIDE,
    ]),
    Resource.APPROVALS: frozenset([
        Action.READ, Action.LIST, Action.APPROVE,
    ]),
    Resource.APPROVAL_ROUTING: frozenset([
        Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE, Action.LIST,
    ]),
    Resource.PRODUCTS: frozenset([
        Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE, Action.LIST,
    ]),
    Resource.GROUPS: frozenset([
        Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE, Action.LIST, Action.MANAGE,
    ]),
    Resource.USERS: frozenset([
        Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE, Action.LIST, Action.MANAGE,
    ]),
    Resource.ROLES: frozenset([
        Action.READ, Action.LIST, Action.MANAGE,
    ]),
    Resource.AUDIT_LOGS: frozenset([
        Action.READ, Action.LIST,
    ]),
}


def _generate_permission_definitions() -> dict[str, Permission]:
    """Generate all valid permission combinations from the matrix."""
    permissions = {}
    for resource, actions in PERMISSION_MATRIX.items():
        for action in actions:
            perm = Permission(resource, action)
            permissions[str(perm)] = perm
    return permissions


# All valid permissions as a dictionary: "resource:action" -> Permission
PERMISSION_DEFINITIONS = _generate_permission_definitions()


def is_valid_permission(perm_str: str) -> bool:
    """Check if a permission string is valid."""
    return perm_str in PERMISSION_DEFINITIONS


def get_permissions_for_resource(resource: Resource) -> list[str]:
    """Get all valid permission strings for a resource."""
    return [
        str(Permission(resource, action))
        for action in PERMISSION_MATRIX.get(resource, set())
    ]
