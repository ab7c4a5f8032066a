"""
Authorization gate for protected page paths.

The gate intercepts requests under the configured prefixes, requires a
claim for all of them and the admin role for the admin prefixes. Failing
requests are redirected rather than rejected. The gate never mutates
identity state.
"""

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from cryptodash.auth.claims import ClaimResolver, CurrentUser
from cryptodash.auth.roles import Role
from cryptodash.config import Settings
from cryptodash.shared.database import DatabaseManager, get_database_manager, storage_guard
from cryptodash.shared.exceptions import AuthenticationError, StorageError
from cryptodash.shared.logging import get_logger

logger = get_logger(__name__)


class GateOutcome(str, Enum):
    ALLOW = "allow"
    SIGN_IN = "sign_in"
    ACCESS_DENIED = "access_denied"


@dataclass(frozen=True)
class GateDecision:
    outcome: GateOutcome
    location: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome is GateOutcome.ALLOW


ALLOW = GateDecision(GateOutcome.ALLOW)


def _matches(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/") or "/"
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix + "/")


class AuthorizationGate:
    """Path-based access policy."""

    def __init__(
        self,
        admin_prefixes: list[str],
        authenticated_prefixes: list[str],
        sign_in_path: str = "/login",
        access_denied_path: str = "/access-denied",
    ) -> None:
        self.admin_prefixes = list(admin_prefixes)
        self.authenticated_prefixes = list(authenticated_prefixes)
        self.sign_in_path = sign_in_path
        self.access_denied_path = access_denied_path

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthorizationGate":
        return cls(
            admin_prefixes=settings.admin_path_prefixes_list,
            authenticated_prefixes=settings.authenticated_path_prefixes_list,
            sign_in_path=settings.sign_in_path,
            access_denied_path=settings.access_denied_path,
        )

    def requires_admin(self, path: str) -> bool:
        return any(_matches(path, prefix) for prefix in self.admin_prefixes)

    def is_protected(self, path: str) -> bool:
        return self.requires_admin(path) or any(
            _matches(path, prefix) for prefix in self.authenticated_prefixes
        )

    def decide(self, path: str, claim: CurrentUser | None) -> GateDecision:
        """Decide whether a request for path may proceed.

        Args:
            path: Request path.
            claim: Resolved identity claim, None if unauthenticated.

        Returns:
            ALLOW, or a redirect decision carrying its location.
        """
        if not self.is_protected(path):
            return ALLOW
        if claim is None:
            query = urlencode({"callbackUrl": path})
            return GateDecision(GateOutcome.SIGN_IN, f"{self.sign_in_path}?{query}")
        if self.requires_admin(path) and claim.role is not Role.ADMIN:
            return GateDecision(GateOutcome.ACCESS_DENIED, self.access_denied_path)
        return ALLOW


class AuthorizationGateMiddleware(BaseHTTPMiddleware):
    """Applies an AuthorizationGate to every incoming request."""

    def __init__(
        self,
        app: ASGIApp,
        gate: AuthorizationGate,
        resolver: ClaimResolver,
    ) -> None:
        super().__init__(app)
        self.gate = gate
        self.resolver = resolver

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        path = request.url.path
        if not self.gate.is_protected(path):
            return await call_next(request)

        try:
            claim = await self._resolve_claim(request)
        except StorageError as e:
            # Middleware errors bypass the app exception handlers
            return JSONResponse(
                status_code=500,
                content={"detail": {"code": e.code, "message": e.message}},
            )
        decision = self.gate.decide(path, claim)
        if decision.allowed:
            return await call_next(request)

        logger.info(
            "Gate redirect",
            extra={
                "path": path,
                "outcome": decision.outcome.value,
                "user_id": str(claim.id) if claim else None,
                "event_type": "access_denied" if claim else "sign_in_required",
            },
        )
        return RedirectResponse(decision.location, status_code=307)

    async def _resolve_claim(self, request: Request) -> CurrentUser | None:
        token = self.resolver.extract_token(request)
        if token is None:
            return None
        try:
            if not self.resolver.needs_storage:
                return self.resolver.decode(token)
            manager: DatabaseManager = getattr(request.app.state, "db", None) or get_database_manager()
            async with manager.session() as session:
                async with storage_guard(session, "gate_resolve_claim"):
                    return await self.resolver.resolve(token, session)
        except AuthenticationError as e:
            logger.debug("Gate ignored unusable claim", extra={"path": request.url.path, "error": e.message})
            return None
