"""
Security guards for role-based and ownership-based access control.

Provides dependencies for protecting endpoints.
"""

from typing import List, Optional
from fastapi import Depends, HTTPException, status
from busline.app.models.enums import UserRole
from busline.app.core.dependencies import get_current_user
from busline.app.core.exceptions import InsufficientPermissionsError


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/schedules/{schedule_id}/toggle-live")
        async def toggle_live(current_user: dict = Depends(require_role([UserRole.DRIVER]))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


def verify_ownership(resource_owner_id: Optional[int], current_user: dict) -> bool:
    """
    Verify that the current user owns the resource.

    Admins are always allowed. Everybody else must be the owner itself
    (for schedules, the assigned driver).
    """
    if current_user.get("role") == UserRole.ADMIN.value:
        return True

    if resource_owner_id is None:
        return False

    return current_user.get("user_id") == resource_owner_id


class OwnershipGuard:
    """
    Class-based ownership guard.

    Usage:
        ownership_guard = OwnershipGuard()
        ownership_guard.enforce(schedule.driver_id, current_user, "schedule")
    """

    def enforce(
        self,
        resource_owner_id: Optional[int],
        current_user: dict,
        resource_name: str = "resource"
    ):
        """
        Enforce ownership validation, raise 403 if access denied.

        Raises:
            InsufficientPermissionsError (403) if ownership check fails
        """
        if not verify_ownership(resource_owner_id, current_user):
            raise InsufficientPermissionsError(
                f"Access denied. You are not assigned to this {resource_name}.",
                details={"resource": resource_name, "user_id": current_user.get("user_id")},
            )
