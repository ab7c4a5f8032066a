"""
Role-based access control dependencies for API routes.
"""

from typing import Annotated

from fastapi import Depends, Request

from cryptodash.auth.claims import CurrentUser
from cryptodash.auth.middleware import get_current_user
from cryptodash.auth.roles import Role
from cryptodash.shared.exceptions import AuthorizationError
from cryptodash.shared.logging import get_logger

logger = get_logger(__name__)


class RBACChecker:
    """Dependency class for role-based access control checks."""

    def __init__(self, minimum_role: Role) -> None:
        """Initialize RBAC checker.

        Args:
            minimum_role: Minimum role required for access.
        """
        self.minimum_role = minimum_role

    async def __call__(
        self,
        request: Request,
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        """Check if current user has required role.

        Args:
            request: FastAPI request object.
            current_user: Current authenticated user.

        Returns:
            Current user if authorized.

        Raises:
            AuthorizationError: If user lacks required role.
        """
        if not current_user.role.has_permission(self.minimum_role):
            log_access_denied(
                user_id=str(current_user.id),
                user_email=current_user.email,
                user_role=current_user.role.value,
                endpoint=str(request.url.path),
                method=request.method,
                required_role=self.minimum_role.value,
                client_ip=request.client.host if request.client else "unknown",
            )
            raise AuthorizationError(
                message="Unauthorized",
                details={
                    "required_role": self.minimum_role.value,
                    "current_role": current_user.role.value,
                },
            )

        logger.debug(
            "Access granted",
            extra={
                "user_id": str(current_user.id),
                "endpoint": str(request.url.path),
                "method": request.method,
            },
        )
        return current_user


require_admin = RBACChecker(Role.ADMIN)

AdminUserDep = Annotated[CurrentUser, Depends(require_admin)]


def log_access_denied(
    user_id: str,
    user_email: str,
    user_role: str,
    endpoint: str,
    method: str,
    required_role: str,
    client_ip: str = "unknown",
) -> None:
    """Log an access denied event.

    Args:
        user_id: ID of the user who was denied.
        user_email: Email of the user.
        user_role: Role of the user.
        endpoint: Endpoint that was accessed.
        method: HTTP method used.
        required_role: Role that was required.
        client_ip: Client IP address.
    """
    logger.warning(
        "Access denied",
        extra={
            "user_id": user_id,
            "user_email": user_email,
            "user_role": user_role,
            "required_role": required_role,
            "endpoint": endpoint,
            "method": method,
            "client_ip": client_ip,
            "event_type": "access_denied",
        },
    )
