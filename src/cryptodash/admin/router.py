"""Admin API routes: user management and the audit log."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.admin.audit import AuditTrailReader
from cryptodash.admin.models import AuditAction
from cryptodash.admin.schemas import (
    AuditLogPage,
    ChangeRoleRequest,
    DeleteUserResponse,
    RoleChangeResponse,
    SetRoleRequest,
    UserListResponse,
)
from cryptodash.admin.service import MutationOutcome, UserAdminService
from cryptodash.auth.rbac import AdminUserDep
from cryptodash.auth.schemas import UserProfile
from cryptodash.config import Settings, get_request_settings
from cryptodash.shared.database import get_db_session
from cryptodash.shared.exceptions import ValidationError

router = APIRouter(prefix="/api/admin", tags=["admin"])


def get_admin_service(session: AsyncSession = Depends(get_db_session)) -> UserAdminService:
    return UserAdminService(session=session)


def get_audit_reader(session: AsyncSession = Depends(get_db_session)) -> AuditTrailReader:
    return AuditTrailReader(session=session)


def _role_response(outcome: MutationOutcome) -> RoleChangeResponse:
    return RoleChangeResponse(
        role=outcome.role.value,
        audit_recorded=outcome.audit_recorded,
    )


@router.get("/users", response_model=UserListResponse, summary="List all users")
async def list_users(
    actor: AdminUserDep,
    service: UserAdminService = Depends(get_admin_service),
) -> UserListResponse:
    users = await service.list_users(actor)
    return UserListResponse(users=[UserProfile.model_validate(u) for u in users])


@router.patch("/users/role", response_model=RoleChangeResponse, summary="Change a user's role")
async def change_role(
    payload: ChangeRoleRequest,
    actor: AdminUserDep,
    service: UserAdminService = Depends(get_admin_service),
) -> RoleChangeResponse:
    outcome = await service.change_role(actor, payload.user_id, payload.new_role)
    return _role_response(outcome)


@router.patch("/users/{user_id}", response_model=RoleChangeResponse, summary="Set a user's role")
async def set_role(
    user_id: UUID,
    payload: SetRoleRequest,
    actor: AdminUserDep,
    service: UserAdminService = Depends(get_admin_service),
) -> RoleChangeResponse:
    outcome = await service.change_role(actor, user_id, payload.role)
    return _role_response(outcome)


@router.delete("/users/{user_id}", response_model=DeleteUserResponse, summary="Delete a user")
async def delete_user(
    user_id: UUID,
    actor: AdminUserDep,
    service: UserAdminService = Depends(get_admin_service),
) -> DeleteUserResponse:
    outcome = await service.delete_user(actor, user_id)
    return DeleteUserResponse(audit_recorded=outcome.audit_recorded)


@router.get("/audit", response_model=AuditLogPage, summary="Page through the audit log")
async def list_audit_logs(
    actor: AdminUserDep,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    action: AuditAction | None = Query(None),
    reader: AuditTrailReader = Depends(get_audit_reader),
    settings: Settings = Depends(get_request_settings),
) -> AuditLogPage:
    page_size = limit or settings.audit_default_page_size
    if page_size > settings.audit_max_page_size:
        raise ValidationError(
            f"limit must be at most {settings.audit_max_page_size}",
            details={"limit": page_size},
        )
    return await reader.list_entries(page=page, page_size=page_size, action=action)
