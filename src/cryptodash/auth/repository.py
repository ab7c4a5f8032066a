"""
User repository for database operations.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.auth.models import PasswordResetTicket, User, utcnow
from cryptodash.auth.roles import DEFAULT_ROLE, Role


class UserRepositoryProtocol(Protocol):
    """Protocol for user repository operations."""

    async def get_by_id(self, user_id: UUID) -> User | None: ...
    async def get_by_email(self, email: str) -> User | None: ...
    async def get_many(self, user_ids: Iterable[UUID]) -> dict[UUID, User]: ...
    async def list_all(self) -> list[User]: ...
    async def create(self, user: User) -> User: ...
    async def update(self, user: User) -> User: ...
    async def set_role(self, user: User, role: Role) -> User: ...
    async def delete(self, user: User) -> None: ...
    async def count_by_role(self, role: Role) -> int: ...
    async def lock_admins(self) -> list[UUID]: ...
    async def upsert_from_oauth(
        self, provider: str, email: str, name: str | None, image: str | None = None
    ) -> User: ...


class UserRepository:
    """Repository for user database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_by_id(self, user_id: UUID) -> User | None:
        """Get user by ID.

        Args:
            user_id: User UUID.

        Returns:
            User if found, None otherwise.
        """
        result = await self._session.execute(
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        """Get user by email.

        Args:
            email: User email address.

        Returns:
            User if found, None otherwise.
        """
        result = await self._session.execute(
            select(User).where(User.email == email)
        )
        return result.scalar_one_or_none()

    async def get_many(self, user_ids: Iterable[UUID]) -> dict[UUID, User]:
        """Load the given users in one query, keyed by id.

        Ids without a matching record are absent from the result.
        """
        ids = set(user_ids)
        if not ids:
            return {}
        result = await self._session.execute(select(User).where(User.id.in_(ids)))
        return {user.id: user for user in result.scalars()}

    async def list_all(self) -> list[User]:
        """List every user, oldest account first."""
        result = await self._session.execute(
            select(User).order_by(User.created_at, User.email)
        )
        return list(result.scalars())

    async def create(self, user: User) -> User:
        """Create a new user.

        Args:
            user: User model instance.

        Returns:
            Created user with generated ID.
        """
        self._session.add(user)
        await self._session.flush()
        await self._session.refresh(user)
        return user

    async def update(self, user: User) -> User:
        """Flush pending changes on a user and stamp updated_at."""
        user.updated_at = utcnow()
        await self._session.flush()
        await self._session.refresh(user)
        return user

    async def set_role(self, user: User, role: Role) -> User:
        """Assign a role to a user.

        Args:
            user: Loaded user record.
            role: New role.

        Returns:
            Updated user.
        """
        user.role = role.value
        return await self.update(user)

    async def delete(self, user: User) -> None:
        """Delete a user together with their pending reset tickets."""
        await self._session.execute(
            delete(PasswordResetTicket).where(PasswordResetTicket.user_id == user.id)
        )
        await self._session.delete(user)
        await self._session.flush()

    async def count_by_role(self, role: Role) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(User).where(User.role == role.value)
        )
        return int(result.scalar_one())

    async def lock_admins(self) -> list[UUID]:
        """Lock every admin row for the rest of the transaction.

        Concurrent callers block until the holder commits, then see the
        committed roles, so a count taken from the result cannot go stale
        before the caller's own mutation. SQLite ignores FOR UPDATE, so
        callers recount after flushing their change.

        Returns:
            Ids of the current admins.
        """
        result = await self._session.execute(
            select(User.id).where(User.role == Role.ADMIN.value).with_for_update()
        )
        return list(result.scalars())

    async def upsert_from_oauth(
        self,
        provider: str,
        email: str,
        name: str | None,
        image: str | None = None,
    ) -> User:
        """Create or link a user from an OAuth sign-in.

        An existing account with the same email gets the provider linked and
        its name and image refreshed; otherwise a new account with the
        default role is created.

        Args:
            provider: OAuth provider name.
            email: Verified email from the provider.
            name: Display name from the provider.
            image: Profile image URL from the provider.

        Returns:
            Created or linked user.
        """
        user = await self.get_by_email(email)

        if user is None:
            user = User(
                email=email,
                name=name or email,
                image=image,
                role=DEFAULT_ROLE.value,
                oauth_providers=[provider],
            )
            return await self.create(user)

        if provider not in (user.oauth_providers or []):
            user.oauth_providers = [*(user.oauth_providers or []), provider]
            user.name = name or user.name
            user.image = image or user.image
            return await self.update(user)
        return user


class PasswordResetRepository:
    """Repository for password reset tickets."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, user_id: UUID, token: str, expires_at: datetime) -> PasswordResetTicket:
        ticket = PasswordResetTicket(user_id=user_id, token=token, expires_at=expires_at)
        self._session.add(ticket)
        await self._session.flush()
        return ticket

    async def get_by_token(self, token: str) -> PasswordResetTicket | None:
        result = await self._session.execute(
            select(PasswordResetTicket).where(PasswordResetTicket.token == token)
        )
        return result.scalar_one_or_none()

    async def consume(self, ticket: PasswordResetTicket) -> None:
        await self._session.delete(ticket)
        await self._session.flush()
