"""Authentication API routes."""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from cryptodash.auth.claims import CurrentUser
from cryptodash.auth.middleware import CurrentUserDep, get_current_user
from cryptodash.auth.schemas import (
    LoginRequest,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegisterRequest,
    RegisterResponse,
    SessionClaim,
    SuccessResponse,
    TokenResponse,
)
from cryptodash.auth.service import AuthService, IssuedClaim
from cryptodash.config import Settings, get_request_settings
from cryptodash.shared.database import get_db_session

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_REQUESTED_MESSAGE = "If this email exists, a reset link has been sent."


def get_auth_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_request_settings),
) -> AuthService:
    return AuthService(session=session, settings=settings)


def _token_response(issued: IssuedClaim, response: Response, settings: Settings) -> TokenResponse:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=issued.token,
        max_age=issued.expires_in,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
        path="/",
    )
    return TokenResponse(
        access_token=issued.token,
        expires_in=issued.expires_in,
        user=SessionClaim.model_validate(issued.claim.model_dump()),
    )


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a credentials account",
)
async def register(
    payload: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    user = await auth_service.register(
        name=payload.name,
        email=str(payload.email),
        password=payload.password,
    )
    return RegisterResponse(user_id=user.id)


@router.post("/login", response_model=TokenResponse, summary="Sign in with email and password")
async def login(
    payload: LoginRequest,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_request_settings),
) -> TokenResponse:
    issued = await auth_service.authenticate(str(payload.email), payload.password)
    return _token_response(issued, response, settings)


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Reissue the session claim from the live account",
)
async def refresh(
    response: Response,
    current_user: CurrentUser = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_request_settings),
) -> TokenResponse:
    """Pick up role changes made since the claim was issued."""
    issued = await auth_service.refresh_claim(current_user.id)
    return _token_response(issued, response, settings)


@router.get("/me", response_model=SessionClaim, summary="Current session claim")
async def get_me(current_user: CurrentUserDep) -> SessionClaim:
    return SessionClaim.model_validate(current_user.model_dump())


@router.post("/logout", response_model=SuccessResponse, summary="Clear the session cookie")
async def logout(
    response: Response,
    settings: Settings = Depends(get_request_settings),
) -> SuccessResponse:
    """Claims are stateless; signing out only drops the cookie."""
    response.delete_cookie(settings.session_cookie_name, path="/")
    return SuccessResponse()


@router.post("/reset", response_model=MessageResponse, summary="Request a password reset link")
async def request_reset(
    payload: PasswordResetRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth_service.request_password_reset(str(payload.email))
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/reset/{token}", response_model=SuccessResponse, summary="Set a new password")
async def confirm_reset(
    token: str,
    payload: PasswordResetConfirm,
    auth_service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    await auth_service.reset_password(token, payload.password)
    return SuccessResponse()
