"""
FastAPI application entry point.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cryptodash import __version__
from cryptodash.admin.router import router as admin_router
from cryptodash.auth.claims import ClaimResolver
from cryptodash.auth.gate import AuthorizationGate, AuthorizationGateMiddleware
from cryptodash.auth.router import router as auth_router
from cryptodash.config import Settings, get_settings
from cryptodash.pages.router import router as pages_router
from cryptodash.shared.database import DatabaseManager, get_database_manager
from cryptodash.shared.exceptions import (
    AppException,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from cryptodash.shared.logging import CorrelationIdMiddleware, get_logger, setup_logging

logger = get_logger(__name__)

# Most specific first
_STATUS_BY_EXCEPTION: tuple[tuple[type[AppException], int], ...] = (
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: AppException) -> int:
    for exc_type, status_code in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    setup_logging(settings.log_level)

    logger.info(
        "Application starting",
        extra={"env": settings.app_env, "claim_validity": settings.claim_validity.value},
    )

    if settings.auto_create_tables:
        await app.state.db.create_all()
        logger.info("Database tables ensured")

    yield

    logger.info("Shutting down application")
    await app.state.db.close()
    logger.info("Application shutdown complete")


def create_app(
    settings: Settings | None = None,
    database: DatabaseManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings override; defaults to the environment.
        database: Database manager override; defaults to the global one.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="cryptodash admin API",
        description="User roles, authorization gate and audit trail",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.db = database or get_database_manager()

    @app.exception_handler(AppException)
    async def _app_exception(request: Request, exc: AppException) -> JSONResponse:
        status_code = status_for(exc)
        headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
        # StorageError details stay server-side; the cause is already logged
        content = {"code": exc.code, "message": exc.message}
        if exc.details and not isinstance(exc, StorageError):
            content["details"] = exc.details
        return JSONResponse(status_code=status_code, content={"detail": content}, headers=headers)

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    # Added innermost first: the gate sees requests after CORS and correlation
    app.add_middleware(
        AuthorizationGateMiddleware,
        gate=AuthorizationGate.from_settings(settings),
        resolver=ClaimResolver(settings),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(pages_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app
