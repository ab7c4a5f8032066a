"""
Pydantic schemas for the admin API.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from cryptodash.admin.models import AuditAction
from cryptodash.auth.schemas import UserProfile
from cryptodash.shared.schemas import CamelModel

UNKNOWN_USER_NAME = "Unknown user"


class UserListResponse(CamelModel):
    users: list[UserProfile]


class ChangeRoleRequest(CamelModel):
    """Body of PATCH /api/admin/users/role."""

    user_id: UUID
    # Plain str so an unknown role reaches the manager and fails as a 400
    new_role: str


class SetRoleRequest(CamelModel):
    """Body of PATCH /api/admin/users/{id}."""

    role: str


class RoleChangeResponse(CamelModel):
    success: bool = True
    role: str
    audit_recorded: bool


class DeleteUserResponse(CamelModel):
    success: bool = True
    audit_recorded: bool


class UserRef(CamelModel):
    """Display attributes of a user mentioned by an audit entry."""

    id: UUID
    name: str = UNKNOWN_USER_NAME
    email: str | None = None
    known: bool = False


class AuditLogView(CamelModel):
    id: int
    timestamp: datetime
    actor_id: UUID
    target_user_id: UUID
    action: AuditAction
    details: dict[str, Any]
    actor: UserRef
    target: UserRef


class Pagination(CamelModel):
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total_pages: int
    total_count: int


class AuditLogPage(CamelModel):
    logs: list[AuditLogView]
    pagination: Pagination
