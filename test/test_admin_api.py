"""
Tests for the admin API endpoints.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from uuid import uuid4

import pytest
from fastapi import status
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.admin.repository import AuditLogRepository
from cryptodash.auth.jwt import JWTHandler
from cryptodash.auth.models import User
from cryptodash.auth.repository import UserRepository
from cryptodash.auth.roles import Role
from cryptodash.config import ClaimValidity, Settings
from cryptodash.main import create_app
from cryptodash.shared.database import DatabaseManager

Headers = Callable[..., dict[str, str]]


class TestListUsers:
    @pytest.mark.asyncio
    async def test_admin_gets_all_users(
        self,
        async_client: AsyncClient,
        admin_user: User,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.get("/api/admin/users", headers=auth_headers(admin_user))

        assert response.status_code == status.HTTP_200_OK
        users = response.json()["users"]
        assert {u["email"] for u in users} == {admin_user.email, regular_user.email}
        assert "createdAt" in users[0]
        assert all("passwordHash" not in u and "password_hash" not in u for u in users)

    @pytest.mark.asyncio
    async def test_missing_claim_is_401(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/api/admin/users")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.headers["www-authenticate"] == "Bearer"
        assert response.json()["detail"]["code"] == "NOT_AUTHENTICATED"

    @pytest.mark.asyncio
    async def test_non_admin_is_403(
        self,
        async_client: AsyncClient,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.get("/api/admin/users", headers=auth_headers(regular_user))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["detail"]["message"] == "Unauthorized"

    @pytest.mark.asyncio
    async def test_expired_claim_is_401(
        self,
        async_client: AsyncClient,
        jwt_handler: JWTHandler,
        admin_user: User,
    ) -> None:
        token = jwt_handler.create_access_token(
            admin_user.id,
            admin_user.email,
            admin_user.name,
            "admin",
            now=datetime.now(timezone.utc) - timedelta(hours=3),
        )

        response = await async_client.get(
            "/api/admin/users", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"]["code"] == "TOKEN_EXPIRED"


class TestChangeRole:
    @pytest.mark.asyncio
    async def test_change_role(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.patch(
            "/api/admin/users/role",
            json={"userId": str(regular_user.id), "newRole": "moderator"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"success": True, "role": "moderator", "auditRecorded": True}
        user = await UserRepository(db_session).get_by_id(regular_user.id)
        assert user.role == "moderator"

    @pytest.mark.asyncio
    async def test_set_role_by_path(
        self,
        async_client: AsyncClient,
        admin_user: User,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.patch(
            f"/api/admin/users/{regular_user.id}",
            json={"role": "admin"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["role"] == "admin"

    @pytest.mark.asyncio
    async def test_invalid_role_is_400(
        self,
        async_client: AsyncClient,
        admin_user: User,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.patch(
            "/api/admin/users/role",
            json={"userId": str(regular_user.id), "newRole": "root"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == {
            "code": "INVALID_ROLE",
            "message": "Invalid role specified",
            "details": {"role": "root"},
        }

    @pytest.mark.asyncio
    async def test_malformed_body_is_422(
        self,
        async_client: AsyncClient,
        admin_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.patch(
            "/api/admin/users/role",
            json={"userId": "not-a-uuid", "newRole": "user"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_self_demotion_is_400(
        self,
        async_client: AsyncClient,
        admin_user: User,
        second_admin: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.patch(
            f"/api/admin/users/{admin_user.id}",
            json={"role": "user"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"]["code"] == "SELF_DEMOTION"

    @pytest.mark.asyncio
    async def test_unknown_user_is_404(
        self,
        async_client: AsyncClient,
        admin_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.patch(
            f"/api/admin/users/{uuid4()}",
            json={"role": "user"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"]["code"] == "USER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_audit_failure_reported(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        failure = OperationalError("INSERT INTO audit_logs", {}, Exception("disk full"))
        with patch.object(AuditLogRepository, "append", side_effect=failure):
            response = await async_client.patch(
                f"/api/admin/users/{regular_user.id}",
                json={"role": "moderator"},
                headers=auth_headers(admin_user),
            )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["auditRecorded"] is False
        user = await UserRepository(db_session).get_by_id(regular_user.id)
        assert user.role == "moderator"

    @pytest.mark.asyncio
    async def test_storage_failure_is_500_without_detail(
        self,
        async_client: AsyncClient,
        admin_user: User,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        headers = auth_headers(admin_user)
        failure = OperationalError("UPDATE users", {}, Exception("connection reset"))
        with patch.object(UserRepository, "set_role", side_effect=failure):
            response = await async_client.patch(
                f"/api/admin/users/{regular_user.id}",
                json={"role": "moderator"},
                headers=headers,
            )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {
            "detail": {"code": "STORAGE_ERROR", "message": "Storage operation failed"}
        }


class TestDeleteUser:
    @pytest.mark.asyncio
    async def test_delete(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.delete(
            f"/api/admin/users/{regular_user.id}", headers=auth_headers(admin_user)
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"success": True, "auditRecorded": True}
        assert await UserRepository(db_session).get_by_id(regular_user.id) is None

    @pytest.mark.asyncio
    async def test_self_delete_is_400(
        self,
        async_client: AsyncClient,
        admin_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.delete(
            f"/api/admin/users/{admin_user.id}", headers=auth_headers(admin_user)
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"]["code"] == "SELF_DELETION"

    @pytest.mark.asyncio
    async def test_deleted_user_claim_rejected(
        self,
        async_client: AsyncClient,
        admin_user: User,
        second_admin: User,
        auth_headers: Headers,
    ) -> None:
        stale = auth_headers(second_admin)
        await async_client.delete(f"/api/admin/users/{second_admin.id}", headers=auth_headers(admin_user))

        response = await async_client.get("/api/admin/users", headers=stale)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"]["code"] == "USER_NOT_FOUND"


class TestAuditEndpoint:
    @pytest.mark.asyncio
    async def test_lists_mutations(
        self,
        async_client: AsyncClient,
        admin_user: User,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        headers = auth_headers(admin_user)
        await async_client.patch(
            f"/api/admin/users/{regular_user.id}", json={"role": "moderator"}, headers=headers
        )
        await async_client.delete(f"/api/admin/users/{regular_user.id}", headers=headers)

        response = await async_client.get("/api/admin/audit", headers=headers)

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["pagination"] == {"page": 1, "limit": 20, "totalPages": 1, "totalCount": 2}
        newest, oldest = body["logs"]
        assert newest["action"] == "DELETE_USER"
        assert newest["details"]["deletedUser"]["role"] == "moderator"
        assert newest["target"] == {
            "id": str(regular_user.id),
            "name": "Unknown user",
            "email": None,
            "known": False,
        }
        assert newest["actor"]["email"] == admin_user.email
        assert oldest["action"] == "UPDATE_ROLE"
        assert oldest["details"] == {"previousRole": "user", "newRole": "moderator"}
        assert oldest["targetUserId"] == str(regular_user.id)

    @pytest.mark.asyncio
    async def test_pagination_and_filter_params(
        self,
        async_client: AsyncClient,
        admin_user: User,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        headers = auth_headers(admin_user)
        for role in ("moderator", "user", "moderator"):
            await async_client.patch(
                f"/api/admin/users/{regular_user.id}", json={"role": role}, headers=headers
            )

        response = await async_client.get(
            "/api/admin/audit",
            params={"page": 2, "limit": 2, "action": "UPDATE_ROLE"},
            headers=headers,
        )

        body = response.json()
        assert response.status_code == status.HTTP_200_OK
        assert len(body["logs"]) == 1
        assert body["pagination"] == {"page": 2, "limit": 2, "totalPages": 2, "totalCount": 3}

    @pytest.mark.asyncio
    async def test_limit_above_maximum_is_400(
        self,
        async_client: AsyncClient,
        admin_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.get(
            "/api/admin/audit", params={"limit": 500}, headers=auth_headers(admin_user)
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"action": "PROMOTE"}])
    async def test_bad_query_is_422(
        self,
        async_client: AsyncClient,
        admin_user: User,
        auth_headers: Headers,
        params: dict,
    ) -> None:
        response = await async_client.get(
            "/api/admin/audit", params=params, headers=auth_headers(admin_user)
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.asyncio
    async def test_non_admin_is_403(
        self,
        async_client: AsyncClient,
        regular_user: User,
        auth_headers: Headers,
    ) -> None:
        response = await async_client.get("/api/admin/audit", headers=auth_headers(regular_user))

        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestScenarios:
    @pytest.mark.asyncio
    async def test_demoted_admin_cannot_act_under_revalidation(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        admin_user: User,
        second_admin: User,
        auth_headers: Headers,
    ) -> None:
        b_headers = auth_headers(second_admin)

        first = await async_client.patch(
            f"/api/admin/users/{second_admin.id}",
            json={"role": "user"},
            headers=auth_headers(admin_user),
        )
        second = await async_client.patch(
            f"/api/admin/users/{admin_user.id}",
            json={"role": "user"},
            headers=b_headers,
        )

        assert first.json()["auditRecorded"] is True
        assert second.status_code == status.HTTP_403_FORBIDDEN
        user = await UserRepository(db_session).get_by_id(admin_user.id)
        assert user.role == "admin"

    @pytest.mark.asyncio
    async def test_stale_admin_claim_still_blocked_by_last_admin_rule(
        self,
        make_settings: Callable[..., Settings],
        db_manager: DatabaseManager,
        db_session: AsyncSession,
        admin_user: User,
        second_admin: User,
        auth_headers: Headers,
    ) -> None:
        app = create_app(
            settings=make_settings(claim_validity=ClaimValidity.TRUST_CLAIM),
            database=db_manager,
        )
        b_headers = auth_headers(second_admin)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
            await client.patch(
                f"/api/admin/users/{second_admin.id}",
                json={"role": "user"},
                headers=auth_headers(admin_user),
            )
            response = await client.patch(
                f"/api/admin/users/{admin_user.id}",
                json={"role": "user"},
                headers=b_headers,
            )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"]["code"] == "LAST_ADMIN"
        assert await UserRepository(db_session).count_by_role(Role.ADMIN) == 1

    @pytest.mark.asyncio
    async def test_second_admin_takes_over(
        self,
        async_client: AsyncClient,
        db_session: AsyncSession,
        admin_user: User,
        make_user: Callable,
        auth_headers: Headers,
    ) -> None:
        newcomer = await make_user("dave@example.com", Role.ADMIN, name="Dave")
        headers = auth_headers(newcomer)

        demote = await async_client.patch(
            f"/api/admin/users/{admin_user.id}", json={"role": "moderator"}, headers=headers
        )
        self_demote = await async_client.patch(
            f"/api/admin/users/{newcomer.id}", json={"role": "user"}, headers=headers
        )

        assert demote.status_code == status.HTTP_200_OK
        assert self_demote.status_code == status.HTTP_400_BAD_REQUEST
        assert self_demote.json()["detail"]["code"] == "SELF_DEMOTION"
        assert await UserRepository(db_session).count_by_role(Role.ADMIN) == 1
