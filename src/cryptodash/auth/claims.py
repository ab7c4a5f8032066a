"""
Session claim extraction and the claim validity policy.

A claim is the signed, cached identity attached to a request. Depending on
Settings.claim_validity the role inside it is either trusted as issued or
replaced by the live role of the user record.
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from cryptodash.auth.jwt import JWTHandler
from cryptodash.auth.models import User
from cryptodash.auth.repository import UserRepository
from cryptodash.auth.roles import Role
from cryptodash.config import ClaimValidity, Settings
from cryptodash.shared.exceptions import AuthenticationError, InvalidTokenError
from cryptodash.shared.logging import get_logger

logger = get_logger(__name__)


class CurrentUser(BaseModel):
    """Authenticated identity attached to a request."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(..., description="User ID")
    email: str = Field(..., description="User email")
    name: str = Field(..., description="User display name")
    role: Role = Field(..., description="User role")

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "CurrentUser":
        return cls(id=user.id, email=user.email, name=user.name, role=Role(user.role))


class ClaimResolver:
    """Turns a request's token into a CurrentUser under the configured policy."""

    def __init__(self, settings: Settings, jwt_handler: JWTHandler | None = None) -> None:
        self._settings = settings
        self._jwt = jwt_handler or JWTHandler(settings)

    @property
    def policy(self) -> ClaimValidity:
        return self._settings.claim_validity

    @property
    def needs_storage(self) -> bool:
        return self.policy is ClaimValidity.REVALIDATE

    def extract_token(self, connection: HTTPConnection) -> str | None:
        """Read the token from the Authorization header, then the session cookie."""
        header = connection.headers.get("authorization")
        if header:
            scheme, _, credentials = header.partition(" ")
            if scheme.lower() == "bearer" and credentials.strip():
                return credentials.strip()
        return connection.cookies.get(self._settings.session_cookie_name) or None

    def decode(self, token: str) -> CurrentUser:
        """Validate a token and build the claim exactly as issued.

        Raises:
            TokenExpiredError: If the token has expired.
            InvalidTokenError: If the token is malformed or carries bad claims.
        """
        payload = self._jwt.validate_access_token(token)
        try:
            return CurrentUser(
                id=UUID(payload["sub"]),
                email=payload["email"],
                name=payload.get("name") or "",
                role=Role.from_string(payload["role"]),
            )
        except (KeyError, ValueError) as e:
            raise InvalidTokenError(
                message="Token carries invalid claims",
                details={"error": str(e)},
            ) from e

    async def revalidate(self, claim: CurrentUser, session: AsyncSession) -> CurrentUser:
        """Replace the claim's attributes with the live user record.

        Raises:
            AuthenticationError: If the user no longer exists.
        """
        user = await UserRepository(session).get_by_id(claim.id)
        if user is None:
            raise AuthenticationError(
                message="Account no longer exists",
                code="USER_NOT_FOUND",
                details={"user_id": str(claim.id)},
            )
        live = CurrentUser.from_user(user)
        if live.role != claim.role:
            logger.info(
                "Stale role claim replaced by live role",
                extra={
                    "user_id": str(claim.id),
                    "claim_role": claim.role.value,
                    "live_role": live.role.value,
                },
            )
        return live

    async def resolve(self, token: str, session: AsyncSession | None) -> CurrentUser:
        """Decode a token and apply the claim validity policy."""
        claim = self.decode(token)
        if self.needs_storage:
            if session is None:
                raise RuntimeError("revalidate policy requires a database session")
            return await self.revalidate(claim, session)
        return claim
