"""JWT handling for session claims."""

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError as JWTInvalidTokenError

from cryptodash.config import Settings, get_settings
from cryptodash.shared.exceptions import InvalidTokenError, TokenExpiredError
from cryptodash.shared.logging import get_logger

logger = get_logger(__name__)

REQUIRED_CLAIMS = ("sub", "email", "role", "type", "exp", "iat")


class JWTHandler:
    """Handler for creating and validating session tokens."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def create_access_token(
        self,
        user_id: Any,
        email: str,
        name: str,
        role: str,
        now: datetime | None = None,
    ) -> str:
        """Create a signed session claim.

        Args:
            user_id: User identity.
            email: User email.
            name: User display name.
            role: Role snapshot at issuance.
            now: Issue time override.

        Returns:
            Encoded JWT.
        """
        issued = now or datetime.now(timezone.utc)
        expires = issued + timedelta(minutes=self._settings.jwt_access_token_expire_minutes)

        payload = {
            "sub": str(user_id),
            "email": email,
            "name": name,
            "role": role,
            "type": "access",
            "iat": issued,
            "exp": expires,
        }

        return jwt.encode(
            payload,
            self._settings.jwt_secret_key,
            algorithm=self._settings.jwt_algorithm,
        )

    def decode_token(self, token: str) -> dict[str, Any]:
        """Decode and validate a JWT token.

        Raises:
            TokenExpiredError: If the token has expired.
            InvalidTokenError: If the signature or structure is invalid.
        """
        try:
            return jwt.decode(
                token,
                self._settings.jwt_secret_key,
                algorithms=[self._settings.jwt_algorithm],
                options={"require": list(REQUIRED_CLAIMS)},
            )
        except ExpiredSignatureError as e:
            raise TokenExpiredError() from e
        except JWTInvalidTokenError as e:
            logger.warning("Invalid token", extra={"error": str(e)})
            raise InvalidTokenError(details={"error": str(e)}) from e

    def validate_access_token(self, token: str) -> dict[str, Any]:
        """Validate an access token and return its payload."""
        payload = self.decode_token(token)

        if payload.get("type") != "access":
            raise InvalidTokenError(
                message="Invalid token type",
                details={"expected": "access", "got": payload.get("type")},
            )

        return payload

    def get_token_expiry(self) -> int:
        """Get access token expiry in seconds."""
        return self._settings.jwt_access_token_expire_minutes * 60
