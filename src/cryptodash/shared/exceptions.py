"""
Custom exception classes for the application.

Each subclass of AppException maps to one HTTP status in main.create_app.
"""

from typing import Any


class AppException(Exception):
    """Base exception for application errors."""

    def __init__(
        self,
        message: str,
        code: str = "APP_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class AuthenticationError(AppException):
    """Raised when no valid identity claim is present."""

    def __init__(
        self,
        message: str = "Not authenticated",
        code: str = "NOT_AUTHENTICATED",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class TokenExpiredError(AuthenticationError):
    """Raised when a token has expired."""

    def __init__(
        self,
        message: str = "Token has expired",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "TOKEN_EXPIRED", details)


class InvalidTokenError(AuthenticationError):
    """Raised when a token is invalid."""

    def __init__(
        self,
        message: str = "Invalid token",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "INVALID_TOKEN", details)


class InvalidCredentialsError(AuthenticationError):
    """Raised when an email/password pair does not match."""

    def __init__(self, message: str = "Invalid email or password") -> None:
        super().__init__(message, "INVALID_CREDENTIALS")


class AuthorizationError(AppException):
    """Raised when a claim is present but its role is insufficient."""

    def __init__(
        self,
        message: str = "Unauthorized",
        code: str = "INSUFFICIENT_PERMISSIONS",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class ValidationError(AppException):
    """Raised when business validation fails (distinct from pydantic ValidationError)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class InvalidRoleError(ValidationError):
    """Raised when a requested role is outside the role set."""

    def __init__(self, role: Any) -> None:
        super().__init__(
            "Invalid role specified",
            "INVALID_ROLE",
            {"role": str(role)},
        )


class SelfDemotionError(ValidationError):
    """Raised when an admin tries to drop their own admin role."""

    def __init__(self) -> None:
        super().__init__("You cannot demote yourself from admin", "SELF_DEMOTION")


class SelfDeletionError(ValidationError):
    """Raised when an admin tries to delete their own account."""

    def __init__(self) -> None:
        super().__init__("You cannot delete your own account", "SELF_DELETION")


class LastAdminError(ValidationError):
    """Raised when a mutation would leave no admin behind."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"Cannot {operation} the last remaining admin",
            "LAST_ADMIN",
            {"operation": operation},
        )


class InvalidResetTokenError(ValidationError):
    """Raised when a password reset token is unknown or expired."""

    def __init__(self) -> None:
        super().__init__("Token invalid or expired", "INVALID_RESET_TOKEN")


class NotFoundError(AppException):
    """Raised when a requested resource does not exist."""

    def __init__(
        self,
        message: str = "Not found",
        code: str = "NOT_FOUND",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class UserNotFoundError(NotFoundError):
    """Raised when a user is not found."""

    def __init__(
        self,
        message: str = "User not found",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "USER_NOT_FOUND", details)


class ConflictError(AppException):
    """Raised when a write collides with existing state."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "CONFLICT", details)


class StorageError(AppException):
    """Raised when the backing store is unreachable or an operation fails.

    The message returned to callers stays generic; the cause is logged.
    """

    def __init__(
        self,
        operation: str,
        message: str = "Storage operation failed",
    ) -> None:
        super().__init__(message, "STORAGE_ERROR", {"operation": operation})
        self.operation = operation
