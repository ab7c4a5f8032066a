"""
Authentication service for self-service account flows.
"""

import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.auth.claims import CurrentUser
from cryptodash.auth.jwt import JWTHandler
from cryptodash.auth.models import User, utcnow
from cryptodash.auth.passwords import hash_password, verify_password
from cryptodash.auth.repository import (
    PasswordResetRepository,
    UserRepository,
    UserRepositoryProtocol,
)
from cryptodash.auth.roles import DEFAULT_ROLE
from cryptodash.config import Settings, get_settings
from cryptodash.shared.database import storage_guard
from cryptodash.shared.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidCredentialsError,
    InvalidResetTokenError,
)
from cryptodash.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuedClaim:
    """A freshly signed session claim."""

    token: str
    expires_in: int
    claim: CurrentUser


class ResetNotifierProtocol(Protocol):
    """Delivers password reset links to users."""

    async def send_reset_link(self, user: User, reset_url: str) -> None: ...


class LoggingResetNotifier:
    """Default notifier: records that a link was issued without leaking it."""

    async def send_reset_link(self, user: User, reset_url: str) -> None:
        logger.info(
            "Password reset link issued",
            extra={"user_id": str(user.id), "event_type": "password_reset_requested"},
        )
        logger.debug("Password reset link", extra={"user_id": str(user.id), "reset_url": reset_url})


class AuthService:
    """Service for registration, sign-in and password reset."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        jwt_handler: JWTHandler | None = None,
        user_repository: UserRepositoryProtocol | None = None,
        reset_repository: PasswordResetRepository | None = None,
        notifier: ResetNotifierProtocol | None = None,
    ) -> None:
        """Initialize authentication service.

        Args:
            session: Database session.
            settings: Application settings.
            jwt_handler: Signs session claims.
            user_repository: User repository for database operations.
            reset_repository: Password reset ticket repository.
            notifier: Delivers reset links.
        """
        self._settings = settings or get_settings()
        self._session = session
        self._jwt = jwt_handler or JWTHandler(self._settings)
        self._users = user_repository or UserRepository(session)
        self._resets = reset_repository or PasswordResetRepository(session)
        self._notifier = notifier or LoggingResetNotifier()

    def issue_claim(self, user: User) -> IssuedClaim:
        """Sign a claim carrying the user's current attributes."""
        claim = CurrentUser.from_user(user)
        token = self._jwt.create_access_token(
            user_id=claim.id,
            email=claim.email,
            name=claim.name,
            role=claim.role.value,
        )
        return IssuedClaim(token=token, expires_in=self._jwt.get_token_expiry(), claim=claim)

    async def register(self, name: str, email: str, password: str) -> User:
        """Create a credentials account with the default role.

        Raises:
            ConflictError: If the email is already registered.
        """
        password_hash = hash_password(password, self._settings.bcrypt_rounds)
        async with storage_guard(self._session, "register"):
            if await self._users.get_by_email(email) is not None:
                raise ConflictError("Email already exists", {"email": email})
            try:
                user = await self._users.create(
                    User(
                        name=name,
                        email=email,
                        password_hash=password_hash,
                        role=DEFAULT_ROLE.value,
                    )
                )
                await self._session.commit()
            except IntegrityError as e:
                # lost a race against a concurrent registration
                await self._session.rollback()
                raise ConflictError("Email already exists", {"email": email}) from e

        logger.info("User registered", extra={"user_id": str(user.id)})
        return user

    async def authenticate(self, email: str, password: str) -> IssuedClaim:
        """Verify credentials and issue a claim.

        Raises:
            InvalidCredentialsError: If the email is unknown or the password wrong.
        """
        async with storage_guard(self._session, "authenticate"):
            user = await self._users.get_by_email(email)

        if user is None or not verify_password(password, user.password_hash):
            logger.info("Failed sign-in", extra={"event_type": "login_failed"})
            raise InvalidCredentialsError()

        logger.info("User signed in", extra={"user_id": str(user.id)})
        return self.issue_claim(user)

    async def refresh_claim(self, user_id: UUID) -> IssuedClaim:
        """Reissue a claim from the live user record.

        Raises:
            AuthenticationError: If the user no longer exists.
        """
        async with storage_guard(self._session, "refresh_claim", user_id=str(user_id)):
            user = await self._users.get_by_id(user_id)
        if user is None:
            raise AuthenticationError(message="Account no longer exists", code="USER_NOT_FOUND")
        return self.issue_claim(user)

    async def sign_in_with_oauth(
        self,
        provider: str,
        email: str,
        name: str | None,
        image: str | None = None,
    ) -> IssuedClaim:
        """Sign in with a verified OAuth profile, creating or linking the account."""
        async with storage_guard(self._session, "oauth_sign_in", provider=provider):
            user = await self._users.upsert_from_oauth(
                provider=provider,
                email=email,
                name=name,
                image=image,
            )
            await self._session.commit()

        logger.info("OAuth sign-in", extra={"user_id": str(user.id), "provider": provider})
        return self.issue_claim(user)

    async def request_password_reset(self, email: str) -> None:
        """Issue a reset ticket if the email is registered.

        Callers get the same outcome whether or not the account exists.
        """
        async with storage_guard(self._session, "request_password_reset"):
            user = await self._users.get_by_email(email)
            if user is None:
                return
            token = secrets.token_hex(32)
            expires_at = utcnow() + timedelta(minutes=self._settings.password_reset_expire_minutes)
            await self._resets.create(user.id, token, expires_at)
            await self._session.commit()

        reset_url = f"{self._settings.password_reset_base_url.rstrip('/')}/{token}"
        await self._notifier.send_reset_link(user, reset_url)

    async def reset_password(self, token: str, new_password: str) -> None:
        """Consume a reset ticket and set a new password.

        Raises:
            InvalidResetTokenError: If the token is unknown or expired.
        """
        password_hash = hash_password(new_password, self._settings.bcrypt_rounds)
        async with storage_guard(self._session, "reset_password"):
            ticket = await self._resets.get_by_token(token)
            if ticket is None or ticket.is_expired():
                raise InvalidResetTokenError()
            user = await self._users.get_by_id(ticket.user_id)
            if user is None:
                await self._resets.consume(ticket)
                await self._session.commit()
                raise InvalidResetTokenError()
            user.password_hash = password_hash
            await self._users.update(user)
            await self._resets.consume(ticket)
            await self._session.commit()

        logger.info("Password reset", extra={"user_id": str(user.id)})
