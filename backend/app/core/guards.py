"""
Security guards for role-based access control.

Every ledger route requires an authenticated user; mutating routes
additionally reject READ_ONLY accounts.
"""

from typing import List
from fastapi import Depends
from backend.app.core.exceptions import InsufficientPermissionsError
from backend.app.models.enums import UserRole
from backend.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.delete("/dealers/transactions/{transaction_id}")
        async def delete_transaction(current_user: dict = Depends(require_role([UserRole.ADMIN]))):
            ...

    Raises:
        InsufficientPermissionsError 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise InsufficientPermissionsError("Role information missing from token")

        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise InsufficientPermissionsError("Invalid role in token")

        if user_role not in allowed_roles:
            raise InsufficientPermissionsError(
                f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}",
                details={"role": user_role.value, "allowed": [r.value for r in allowed_roles]},
            )

        return current_user

    return role_checker


# Staff and admins may write; READ_ONLY accounts are blocked
require_writer = require_role([UserRole.ADMIN, UserRole.STAFF])
require_admin = require_role([UserRole.ADMIN])
