"""
Administrative audit trail: typed entry details, the best-effort writer and
the paginated reader.
"""

import math
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.admin.models import AuditAction, AuditLogEntry
from cryptodash.admin.repository import AuditLogRepository
from cryptodash.admin.schemas import AuditLogPage, AuditLogView, Pagination, UserRef
from cryptodash.auth.models import User, as_utc
from cryptodash.auth.repository import UserRepository
from cryptodash.auth.roles import Role
from cryptodash.shared.database import STORAGE_FAILURES, storage_guard
from cryptodash.shared.logging import get_logger

logger = get_logger(__name__)


class AuditDetails(Protocol):
    """Typed details of one action kind."""

    action: AuditAction

    def to_wire(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class RoleChangeDetails:
    previous_role: Role
    new_role: Role

    action = AuditAction.UPDATE_ROLE

    def to_wire(self) -> dict[str, Any]:
        return {"previousRole": self.previous_role.value, "newRole": self.new_role.value}


@dataclass(frozen=True)
class DeletionDetails:
    """Snapshot of a deleted account, which can no longer be queried."""

    email: str
    name: str
    role: Role

    action = AuditAction.DELETE_USER

    @classmethod
    def from_user(cls, user: User) -> "DeletionDetails":
        return cls(email=user.email, name=user.name, role=Role(user.role))

    def to_wire(self) -> dict[str, Any]:
        return {
            "deletedUser": {
                "email": self.email,
                "name": self.name,
                "role": self.role.value,
            }
        }


@dataclass(frozen=True)
class AuditWriteResult:
    recorded: bool
    entry_id: int | None = None


class AuditTrail:
    """Best-effort audit writer.

    Each entry is committed on its own, after the mutation it describes.
    A failed write is rolled back and logged as audit_write_failed; it is
    never raised to the caller.
    """

    def __init__(self, session: AsyncSession, repository: AuditLogRepository | None = None) -> None:
        self._session = session
        self._repository = repository or AuditLogRepository(session)

    async def record(
        self,
        actor_id: UUID,
        target_user_id: UUID,
        details: AuditDetails,
    ) -> AuditWriteResult:
        try:
            entry = await self._repository.append(
                actor_id=actor_id,
                target_user_id=target_user_id,
                action=details.action,
                details=details.to_wire(),
            )
            await self._session.commit()
        except STORAGE_FAILURES:
            logger.exception(
                "Audit write failed",
                extra={
                    "event_type": "audit_write_failed",
                    "action": details.action.value,
                    "actor_id": str(actor_id),
                    "target_user_id": str(target_user_id),
                },
            )
            try:
                await self._session.rollback()
            except STORAGE_FAILURES:
                logger.warning("Rollback after audit write failure also failed")
            return AuditWriteResult(recorded=False)

        logger.info(
            "Audit log created",
            extra={
                "audit_id": entry.id,
                "action": details.action.value,
                "actor_id": str(actor_id),
                "target_user_id": str(target_user_id),
            },
        )
        return AuditWriteResult(recorded=True, entry_id=entry.id)


def _user_ref(user_id: UUID, users: dict[UUID, User]) -> UserRef:
    user = users.get(user_id)
    if user is None:
        return UserRef(id=user_id)
    return UserRef(id=user_id, name=user.name, email=user.email, known=True)


class AuditTrailReader:
    """Paginated, filterable, most-recent-first view of the audit log."""

    def __init__(
        self,
        session: AsyncSession,
        audit_repository: AuditLogRepository | None = None,
        user_repository: UserRepository | None = None,
    ) -> None:
        self._session = session
        self._audit = audit_repository or AuditLogRepository(session)
        self._users = user_repository or UserRepository(session)

    async def list_entries(
        self,
        page: int,
        page_size: int,
        action: AuditAction | None = None,
    ) -> AuditLogPage:
        """Return one page of entries with actor and target resolved.

        Only the users mentioned on this page are looked up; users that no
        longer exist resolve to an unknown marker.

        Args:
            page: 1-based page number.
            page_size: Entries per page.
            action: Optional action-kind filter.

        Returns:
            The page and its pagination metadata.
        """
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")

        async with storage_guard(self._session, "list_audit_logs"):
            entries = await self._audit.list_page(
                offset=(page - 1) * page_size,
                limit=page_size,
                action=action,
            )
            total_count = await self._audit.count(action)
            mentioned = {e.actor_id for e in entries} | {e.target_user_id for e in entries}
            users = await self._users.get_many(mentioned)

        return AuditLogPage(
            logs=[self._view(entry, users) for entry in entries],
            pagination=Pagination(
                page=page,
                limit=page_size,
                total_pages=math.ceil(total_count / page_size),
                total_count=total_count,
            ),
        )

    @staticmethod
    def _view(entry: AuditLogEntry, users: dict[UUID, User]) -> AuditLogView:
        return AuditLogView(
            id=entry.id,
            timestamp=as_utc(entry.timestamp),
            actor_id=entry.actor_id,
            target_user_id=entry.target_user_id,
            action=AuditAction(entry.action),
            details=entry.details,
            actor=_user_ref(entry.actor_id, users),
            target=_user_ref(entry.target_user_id, users),
        )
