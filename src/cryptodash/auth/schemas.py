"""
Pydantic schemas for authentication and self-service account flows.
"""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from pydantic import AfterValidator, EmailStr, Field

from cryptodash.auth.passwords import MAX_PASSWORD_BYTES
from cryptodash.auth.roles import Role
from cryptodash.shared.schemas import CamelModel


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


NewPassword = Annotated[str, Field(min_length=8), AfterValidator(_check_password_bytes)]


class UserProfile(CamelModel):
    """User record as exposed over the API; never carries the password hash."""

    id: UUID = Field(..., description="User ID")
    email: str = Field(..., description="User email")
    name: str = Field(..., description="User display name")
    role: Role = Field(..., description="User role")
    image: str | None = Field(None, description="Profile image reference")
    created_at: datetime = Field(..., description="Account creation time")
    updated_at: datetime | None = Field(None, description="Last update time")


class SessionClaim(CamelModel):
    """Identity claim carried by the current session."""

    id: UUID
    email: str
    name: str
    role: Role


class RegisterRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: NewPassword


class RegisterResponse(CamelModel):
    success: bool = True
    user_id: UUID


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(CamelModel):
    """Issued session claim."""

    access_token: str = Field(..., description="Signed session claim")
    token_type: str = Field(default="Bearer", description="Token type")
    expires_in: int = Field(..., description="Claim lifetime in seconds")
    user: SessionClaim


class PasswordResetRequest(CamelModel):
    email: EmailStr


class PasswordResetConfirm(CamelModel):
    password: NewPassword


class MessageResponse(CamelModel):
    message: str


class SuccessResponse(CamelModel):
    success: bool = True
