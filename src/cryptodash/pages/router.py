"""
Page endpoints behind the authorization gate.

The gate has already admitted the request by the time these run; the admin
and dashboard pages still resolve the claim to know who is asking.
"""

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.admin.repository import AuditLogRepository
from cryptodash.auth.middleware import CurrentUserDep
from cryptodash.auth.rbac import AdminUserDep
from cryptodash.auth.repository import UserRepository
from cryptodash.auth.roles import Role
from cryptodash.auth.schemas import SessionClaim
from cryptodash.shared.database import get_db_session, storage_guard

router = APIRouter(tags=["pages"])


@router.get("/login", summary="Sign-in entry point")
async def login_page(callback_url: str | None = Query(None, alias="callbackUrl")) -> dict:
    return {
        "message": "Sign in with POST /api/auth/login",
        "callbackUrl": callback_url or "/dashboard",
    }


@router.get("/access-denied", summary="Access denied destination")
async def access_denied_page() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={
            "detail": {
                "code": "ACCESS_DENIED",
                "message": "You do not have permission to view this page",
            }
        },
    )


@router.get("/dashboard", summary="Signed-in landing page")
async def dashboard_page(current_user: CurrentUserDep) -> dict:
    return {"user": SessionClaim.model_validate(current_user.model_dump()).model_dump(by_alias=True, mode="json")}


@router.get("/admin", summary="Admin overview")
async def admin_page(
    actor: AdminUserDep,
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    async with storage_guard(session, "admin_overview"):
        users = UserRepository(session)
        return {
            "userCount": len(await users.list_all()),
            "adminCount": await users.count_by_role(Role.ADMIN),
            "auditLogCount": await AuditLogRepository(session).count(),
        }
