"""
Role and lifecycle management of user accounts.

Every mutation is validated before it touches storage, checks the
last-admin invariant under a lock on the admin rows, applies the change,
recounts the admins inside the same transaction, commits, and then appends
an audit entry on a best-effort basis.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.admin.audit import (
    AuditTrail,
    AuditWriteResult,
    DeletionDetails,
    RoleChangeDetails,
)
from cryptodash.auth.claims import CurrentUser
from cryptodash.auth.models import User
from cryptodash.auth.repository import UserRepository, UserRepositoryProtocol
from cryptodash.auth.roles import Role
from cryptodash.shared.database import storage_guard
from cryptodash.shared.exceptions import (
    AuthorizationError,
    InvalidRoleError,
    LastAdminError,
    SelfDeletionError,
    SelfDemotionError,
    UserNotFoundError,
)
from cryptodash.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MutationOutcome:
    """Result of an applied mutation.

    The mutation itself always succeeded; audit_recorded is False when the
    accompanying audit write failed.
    """

    target_id: UUID
    audit: AuditWriteResult
    role: Role | None = None

    @property
    def audit_recorded(self) -> bool:
        return self.audit.recorded


def parse_role(value: str | Role) -> Role:
    """Validate a requested role.

    Raises:
        InvalidRoleError: If the value is not a known role.
    """
    if isinstance(value, Role):
        return value
    try:
        return Role.from_string(value)
    except ValueError:
        raise InvalidRoleError(value)


async def ensure_not_last_admin(
    users: UserRepositoryProtocol,
    target: User,
    operation: str,
) -> None:
    """Refuse a mutation that would remove the last admin.

    Must run inside the transaction that applies the mutation: the admin
    rows stay locked until it commits.

    Raises:
        LastAdminError: If target is the only admin.
    """
    admin_ids = await users.lock_admins()
    if len(admin_ids) == 1 and target.id in admin_ids:
        raise LastAdminError(operation)


async def ensure_admin_remains(
    session: AsyncSession,
    users: UserRepositoryProtocol,
    operation: str,
) -> None:
    """Recount admins after a flushed mutation and undo it if none remain.

    Backends without row locks (SQLite) let two callers pass
    ensure_not_last_admin together; the second writer waits for the first
    to commit, then sees the combined result here.

    Raises:
        LastAdminError: If the pending change leaves no admin.
    """
    if await users.count_by_role(Role.ADMIN) == 0:
        await session.rollback()
        raise LastAdminError(operation)


class UserAdminService:
    """Administrative operations on user accounts."""

    def __init__(
        self,
        session: AsyncSession,
        user_repository: UserRepositoryProtocol | None = None,
        audit_trail: AuditTrail | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            session: Database session shared by the repositories.
            user_repository: User repository.
            audit_trail: Audit writer.
        """
        self._session = session
        self._users = user_repository or UserRepository(session)
        self._audit = audit_trail or AuditTrail(session)

    @staticmethod
    def _require_admin(actor: CurrentUser) -> None:
        if not actor.is_admin:
            raise AuthorizationError(details={"required_role": Role.ADMIN.value})

    async def list_users(self, actor: CurrentUser) -> list[User]:
        """List every account.

        Raises:
            AuthorizationError: If actor is not an admin.
        """
        self._require_admin(actor)
        async with storage_guard(self._session, "list_users"):
            return await self._users.list_all()

    async def change_role(
        self,
        actor: CurrentUser,
        target_id: UUID,
        new_role: str | Role,
    ) -> MutationOutcome:
        """Assign a new role to a user.

        Re-assigning the role a user already holds still appends an audit
        entry.

        Args:
            actor: Admin performing the change.
            target_id: User whose role changes.
            new_role: Requested role.

        Returns:
            Outcome carrying the new role.

        Raises:
            AuthorizationError: If actor is not an admin.
            InvalidRoleError: If new_role is not a known role.
            SelfDemotionError: If actor would drop their own admin role.
            UserNotFoundError: If the target does not exist.
            LastAdminError: If target is the last admin and would be demoted.
            StorageError: If the store fails.
        """
        self._require_admin(actor)
        role = parse_role(new_role)
        if actor.id == target_id and role is not Role.ADMIN:
            raise SelfDemotionError()

        async with storage_guard(self._session, "change_role", target_id=str(target_id)):
            target = await self._users.get_by_id(target_id)
            if target is None:
                raise UserNotFoundError(details={"user_id": str(target_id)})
            previous_role = Role(target.role)

            removes_admin = previous_role is Role.ADMIN and role is not Role.ADMIN
            if removes_admin:
                await ensure_not_last_admin(self._users, target, "demote")

            await self._users.set_role(target, role)
            if removes_admin:
                await ensure_admin_remains(self._session, self._users, "demote")
            await self._session.commit()

        logger.info(
            "Role changed",
            extra={
                "event_type": "role_changed",
                "actor_id": str(actor.id),
                "target_user_id": str(target_id),
                "previous_role": previous_role.value,
                "new_role": role.value,
            },
        )
        audit = await self._audit.record(
            actor_id=actor.id,
            target_user_id=target_id,
            details=RoleChangeDetails(previous_role=previous_role, new_role=role),
        )
        return MutationOutcome(target_id=target_id, audit=audit, role=role)

    async def delete_user(self, actor: CurrentUser, target_id: UUID) -> MutationOutcome:
        """Delete a user account.

        Args:
            actor: Admin performing the deletion.
            target_id: User to delete.

        Returns:
            Outcome of the deletion.

        Raises:
            AuthorizationError: If actor is not an admin.
            SelfDeletionError: If actor targets their own account.
            UserNotFoundError: If the target does not exist.
            LastAdminError: If target is the last admin.
            StorageError: If the store fails.
        """
        self._require_admin(actor)
        if actor.id == target_id:
            raise SelfDeletionError()

        async with storage_guard(self._session, "delete_user", target_id=str(target_id)):
            target = await self._users.get_by_id(target_id)
            if target is None:
                raise UserNotFoundError(details={"user_id": str(target_id)})
            snapshot = DeletionDetails.from_user(target)

            if snapshot.role is Role.ADMIN:
                await ensure_not_last_admin(self._users, target, "delete")

            await self._users.delete(target)
            if snapshot.role is Role.ADMIN:
                await ensure_admin_remains(self._session, self._users, "delete")
            await self._session.commit()

        logger.info(
            "User deleted",
            extra={
                "event_type": "user_deleted",
                "actor_id": str(actor.id),
                "target_user_id": str(target_id),
            },
        )
        audit = await self._audit.record(
            actor_id=actor.id,
            target_user_id=target_id,
            details=snapshot,
        )
        return MutationOutcome(target_id=target_id, audit=audit)
