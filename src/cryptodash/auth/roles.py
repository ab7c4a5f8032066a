"""
User roles with hierarchical ordering.
"""

from enum import Enum


class Role(str, Enum):
    """User roles."""

    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"

    @classmethod
    def from_string(cls, role_str: str) -> "Role":
        """Convert string to Role enum.

        Args:
            role_str: Role string value.

        Returns:
            Corresponding Role enum.

        Raises:
            ValueError: If role string is invalid.
        """
        try:
            return cls(role_str)
        except ValueError:
            raise ValueError(f"Invalid role: {role_str}")

    def has_permission(self, required_role: "Role") -> bool:
        """Check if this role has permission for the required role.

        Role hierarchy: admin > moderator > user

        Args:
            required_role: The minimum required role.

        Returns:
            True if this role has sufficient permissions.
        """
        return _HIERARCHY.get(self, 0) >= _HIERARCHY.get(required_role, 0)


_HIERARCHY = {
    Role.ADMIN: 3,
    Role.MODERATOR: 2,
    Role.USER: 1,
}

ROLE_VALUES = tuple(role.value for role in Role)
DEFAULT_ROLE = Role.USER
