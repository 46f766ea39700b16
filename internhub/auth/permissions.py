"""Role-based access control for InternHub.

Hierarchical permission system:
- ADMIN (level 2): Refunds, revocations, progress repair
- REVIEWER (level 1): Reviews submissions
- STUDENT (level 0): Enrolls, submits, pays, claims certificates
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles with hierarchical levels.

    ADMIN can do everything REVIEWER can do, and more.
    """

    STUDENT = "student"
    REVIEWER = "reviewer"
    ADMIN = "admin"


ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.STUDENT: 0,
    UserRole.REVIEWER: 1,
    UserRole.ADMIN: 2,
}


def get_role_level(role: UserRole | str) -> int:
    """Get the permission level for a role.

    Unknown roles get the lowest level.
    """
    if isinstance(role, str):
        try:
            role = UserRole(role)
        except ValueError:
            return 0
    return ROLE_HIERARCHY.get(role, 0)


def has_permission(user_role: UserRole | str, required_role: UserRole | str) -> bool:
    """Check if user has at least the required permission level.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.REVIEWER)
        True
        >>> has_permission("student", "reviewer")
        False
    """
    return get_role_level(user_role) >= get_role_level(required_role)


def is_staff(role: UserRole | str) -> bool:
    """Check if role is REVIEWER or higher."""
    return has_permission(role, UserRole.REVIEWER)
