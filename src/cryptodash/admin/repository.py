"""
Audit log repository.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.admin.models import AuditAction, AuditLogEntry


class AuditLogRepository:
    """Append and page through audit entries. There is no update or delete."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        actor_id: UUID,
        target_user_id: UUID,
        action: AuditAction,
        details: dict[str, Any],
    ) -> AuditLogEntry:
        """Insert a new entry stamped with the server clock."""
        entry = AuditLogEntry(
            actor_id=actor_id,
            target_user_id=target_user_id,
            action=action.value,
            details=details,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list_page(
        self,
        offset: int,
        limit: int,
        action: AuditAction | None = None,
    ) -> list[AuditLogEntry]:
        """Return entries most recent first, ties broken by newest id."""
        stmt = select(AuditLogEntry).order_by(
            AuditLogEntry.timestamp.desc(),
            AuditLogEntry.id.desc(),
        )
        if action is not None:
            stmt = stmt.where(AuditLogEntry.action == action.value)
        result = await self._session.execute(stmt.offset(offset).limit(limit))
        return list(result.scalars())

    async def count(self, action: AuditAction | None = None) -> int:
        stmt = select(func.count()).select_from(AuditLogEntry)
        if action is not None:
            stmt = stmt.where(AuditLogEntry.action == action.value)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def list_for_target(self, target_user_id: UUID) -> list[AuditLogEntry]:
        """All entries about one user, oldest first."""
        result = await self._session.execute(
            select(AuditLogEntry)
            .where(AuditLogEntry.target_user_id == target_user_id)
            .order_by(AuditLogEntry.timestamp, AuditLogEntry.id)
        )
        return list(result.scalars())
