"""FastAPI access-control dependencies.

Learn: require_role(floor) builds the dependency that guards a route.
For every request it runs, strictly in order:

1. ensure the database connection (503 if unavailable: not an auth failure)
2. extract the token (Authorization: Bearer header, else the session cookie)
3. verify it (401 with a generic message; the specific kind is logged)
4. compare the caller's role against the floor (403 if too low)
5. attach the identity to request.state and hand it to the route

require_role is memoised per role, so a router-level guard and a route
asking for the identity with the same floor share one resolved
dependency within a request.
"""

from functools import lru_cache
from typing import Optional

import structlog
from fastapi import Depends, Request

from trivedia.auth.jwt import Identity, TokenService
from trivedia.auth.roles import Role, satisfies
from trivedia.config import settings
from trivedia.db.engine import ConnectionManager, get_connections
from trivedia.errors import AuthError, AuthErrorKind, AuthorizationError

logger = structlog.get_logger()


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def extract_token(request: Request) -> Optional[str]:
    """Bearer token from the Authorization header, else the session cookie."""
    authorization = request.headers.get("Authorization")
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
    return request.cookies.get(settings.session_cookie_name) or None


def authenticate(request: Request, tokens: TokenService) -> Identity:
    """Resolve the caller's identity or raise AuthError."""
    token = extract_token(request)
    try:
        if token is None:
            raise AuthError(AuthErrorKind.MISSING_TOKEN, "No bearer token or session cookie")
        return tokens.verify(token)
    except AuthError as e:
        logger.info(
            "auth.token_rejected",
            kind=e.kind.value,
            detail=e.detail,
            path=request.url.path,
        )
        raise


@lru_cache(maxsize=None)
def require_role(floor: Role):
    """Dependency factory: the caller must hold at least `floor`."""

    async def dependency(
        request: Request,
        connections: ConnectionManager = Depends(get_connections),
        tokens: TokenService = Depends(get_token_service),
    ) -> Identity:
        await connections.ensure_connected()

        identity = authenticate(request, tokens)

        if not satisfies(identity.role, floor):
            logger.info(
                "auth.insufficient_role",
                user_id=identity.id,
                role=identity.role.value,
                required=floor.value,
                path=request.url.path,
            )
            raise AuthorizationError(
                f"This action requires the {floor.value} role or higher"
            )

        request.state.identity = identity
        return identity

    dependency.__name__ = f"require_{floor.value}"
    return dependency


# Any signed-in user.
get_current_user = require_role(Role.VIEWER)
