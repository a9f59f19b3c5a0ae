"""Auth API: registration, login, profile, token refresh.

Learn: Routes for the session lifecycle:
- POST /auth/register → create a viewer account → token
- POST /auth/login → email/password → token
- GET /auth/profile (and /auth/me) → current user
- PUT /auth/profile → update names/email
- PUT /auth/change-password → requires the current password
- POST /auth/refresh → new token for a still-valid identity
- POST /auth/logout → clear the session cookie

Every response is a {success, message, data} envelope. The token is
returned in the body for API clients and set as an HttpOnly same-site
cookie for browsers.
"""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from trivedia.auth.dependencies import get_current_user, get_token_service
from trivedia.auth.jwt import Identity, TokenService
from trivedia.auth.store import UserStore
from trivedia.config import settings
from trivedia.db.engine import get_db
from trivedia.errors import envelope
from trivedia.schemas.user import (
    LoginRequest,
    PasswordChange,
    ProfileUpdate,
    RegisterRequest,
    public_profile,
)
from trivedia.services.auth_service import AuthService

router = APIRouter(prefix="/auth")


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> AuthService:
    return AuthService(UserStore(db), tokens)


def _set_session_cookie(response: Response, token: str, tokens: TokenService) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=int(tokens.lifetime.total_seconds()),
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


# ─── Register ────────────────────────────────────────────


@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
):
    """Create a new viewer account and sign it in."""
    user, token = await service.register(body)
    _set_session_cookie(response, token, service.tokens)
    return envelope(
        message="User registered successfully",
        data={"user": public_profile(user), "token": token},
    )


# ─── Login ───────────────────────────────────────────────


@router.post("/login")
async def login(
    body: LoginRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
):
    """Login with email and password → session token."""
    user, token = await service.login(body.email, body.password)
    _set_session_cookie(response, token, service.tokens)
    return envelope(
        message="Login successful",
        data={"user": public_profile(user), "token": token},
    )


# ─── Refresh / logout ───────────────────────────────────


@router.post("/refresh")
async def refresh(
    response: Response,
    identity: Identity = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Exchange a still-valid token for a fresh one."""
    user, token = await service.refresh(identity)
    _set_session_cookie(response, token, service.tokens)
    return envelope(
        message="Token refreshed",
        data={"user": public_profile(user), "token": token},
    )


@router.post("/logout")
async def logout(response: Response, identity: Identity = Depends(get_current_user)):
    """Clear the browser session cookie.

    Tokens are stateless, so a copied bearer token stays valid until it
    expires.
    """
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return envelope(message="Logged out successfully")


# ─── Profile ────────────────────────────────────────────


@router.get("/profile")
@router.get("/me")
async def get_profile(
    identity: Identity = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Get the current authenticated user's profile."""
    user = await service.current_user(identity)
    return envelope(data={"user": public_profile(user)})


@router.put("/profile")
async def update_profile(
    body: ProfileUpdate,
    identity: Identity = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    user = await service.update_profile(identity, body)
    return envelope(
        message="Profile updated successfully",
        data={"user": public_profile(user)},
    )


@router.put("/change-password")
async def change_password(
    body: PasswordChange,
    identity: Identity = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    await service.change_password(identity, body)
    return envelope(message="Password changed successfully")
