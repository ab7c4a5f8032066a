"""
Authentication dependency for API routes.

Exposes:
- get_current_user
- CurrentUserDep (FastAPI dependency alias)
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.auth.claims import ClaimResolver, CurrentUser
from cryptodash.config import Settings, get_request_settings
from cryptodash.shared.database import get_db_session, storage_guard
from cryptodash.shared.exceptions import AuthenticationError, TokenExpiredError
from cryptodash.shared.logging import get_logger

logger = get_logger(__name__)


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_request_settings),
) -> CurrentUser:
    """Extract and validate the current user's claim.

    Raises:
        AuthenticationError: If no valid claim is present.
    """
    resolver = ClaimResolver(settings)
    token = resolver.extract_token(request)

    if token is None:
        logger.warning(
            "Missing authentication credentials",
            extra={
                "endpoint": str(request.url.path),
                "method": request.method,
                "client_ip": request.client.host if request.client else "unknown",
            },
        )
        raise AuthenticationError()

    try:
        async with storage_guard(session, "resolve_claim"):
            return await resolver.resolve(token, session)
    except TokenExpiredError:
        logger.info(
            "Token expired",
            extra={"endpoint": str(request.url.path), "method": request.method},
        )
        raise
    except AuthenticationError as e:
        logger.warning(
            "Rejected claim",
            extra={
                "endpoint": str(request.url.path),
                "method": request.method,
                "error": e.message,
            },
        )
        raise


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
