"""Permission checking utilities for the service desk.

Provides decorators and utilities for enforcing RBAC permissions.
"""

from functools import wraps
from typing import Callable, Union, List, Iterable

from fastapi import HTTPException, status

from .permissions import Permission


class PermissionChecker:
    """Checks if a user has specific permissions based on their role."""

    def __init__(self, user_permissions: Iterable[str]):
        self.permissions = set(user_permissions or [])

    def has_permission(self, permission: Union[str, Permission]) -> bool:
        """Check if user has a specific permission."""
        perm_str = str(permission) if isinstance(permission, Permission) else permission

        if perm_str in self.permissions:
            return True

        if ":" in perm_str:
            # resource:* grants all actions on resource
            resource = perm_str.split(":")[0]
            if f"{resource}:*" in self.permissions:
                return True
            # Global admin wildcard
            if "*:*" in self.permissions:
                return True

        return False

    def has_any_permission(self, permissions: List[Union[str, Permission]]) -> bool:
        """Check if user has any of the given permissions."""
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, permissions: List[Union[str, Permission]]) -> bool:
        """Check if user has all of the given permissions."""
        return all(self.has_permission(p) for p in permissions)


def user_permissions(user) -> List[str]:
    """Permission strings granted by a user's role."""
    if not user or not user.role:
        return []
    return list(user.role.permissions or [])


def has_permission(user, permission: Union[str, Permission]) -> bool:
    """
    Check if a user has a specific permission.

    Args:
        user: User model instance with role relationship
        permission: Permission string or Permission object
    """
    if not user or not user.role:
        return False
    return PermissionChecker(user_permissions(user)).has_permission(permission)


def require_permission(*permissions: Union[str, Permission], require_all: bool = False):
    """
    Decorator factory for FastAPI endpoints requiring specific permissions.

    Args:
        permissions: One or more permission strings or Permission objects
        require_all: If True, user must have ALL permissions. Default: any one.

    Usage:
        @router.get("/changes")
        @require_permission("changes:list")
        async def list_changes(current_user: User = Depends(get_current_user)):
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            # current_user is injected by FastAPI Depends
            current_user = kwargs.get("current_user")

            if not current_user:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required"
                )

            if not current_user.role:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="User has no assigned role"
                )

            checker = PermissionChecker(user_permissions(current_user))
            perm_strs = [str(p) if isinstance(p, Permission) else p for p in permissions]

            if require_all:
                has_access = checker.has_all_permissions(perm_strs)
            else:
                has_access = checker.has_any_permission(perm_strs)

            if not has_access:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Insufficient permissions. Required: {', '.join(perm_strs)}"
                )

            return await func(*args, **kwargs)

        return wrapper
    return decorator
