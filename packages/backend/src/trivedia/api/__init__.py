"""API route table.

Learn: Every router and its minimum role is declared here, statically.
The table is assembled once when the app is built; a router that fails
to import fails startup, not a request. Floors are expressed through
require_role, so the role order in trivedia.auth.roles is the only
place permissions are compared. Routers with a floor of None guard
their own endpoints individually (auth has open login/register next to
signed-in profile routes).
"""

from typing import Optional

from fastapi import APIRouter, Depends

from trivedia.api.admin import router as admin_router
from trivedia.api.auth import router as auth_router
from trivedia.api.health import router as health_router
from trivedia.auth.dependencies import require_role
from trivedia.auth.roles import Role

ROUTE_TABLE: tuple[tuple[APIRouter, Optional[Role], list[str]], ...] = (
    (health_router, None, ["health"]),
    (auth_router, None, ["auth"]),
    (admin_router, Role.ADMIN, ["admin"]),
)


def build_api_router() -> APIRouter:
    api_router = APIRouter(prefix="/api")
    for router, floor, tags in ROUTE_TABLE:
        if floor is not None and not isinstance(floor, Role):
            raise ValueError(f"Invalid role floor {floor!r} for {router.prefix}")
        dependencies = [Depends(require_role(floor))] if floor else []
        api_router.include_router(router, tags=tags, dependencies=dependencies)
    return api_router
