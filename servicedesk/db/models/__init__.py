"""Database models for the service desk."""

from servicedesk.db.models.user import User
from servicedesk.db.models.role import Role
from servicedesk.db.models.catalog import Product, Group, group_members
from servicedesk.db.models.change import Change, ChangeHistory
from servicedesk.db.models.approval import RoutingRule, ApprovalInstance
from servicedesk.db.models.audit import AuditLog, AuditSeverity

__all__ = [
    "User",
    "Role",
    "Product",
    "Group",
    "group_members",
    "Change",
    "ChangeHistory",
    "RoutingRule",
    "ApprovalInstance",
    "AuditLog",
    "AuditSeverity",
]
