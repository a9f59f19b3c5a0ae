"""Admin API: user management and dashboard stats.

Learn: The whole router is mounted behind require_role(Role.ADMIN) in
trivedia.api. Handlers that need the caller ask for the same
dependency; require_role is memoised, so FastAPI resolves it once per
request.

Users are never hard-deleted: DELETE deactivates the account.
"""

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from trivedia.auth.dependencies import get_token_service, require_role
from trivedia.auth.jwt import Identity, TokenService
from trivedia.auth.roles import Role
from trivedia.auth.store import UserStore
from trivedia.db.engine import get_db
from trivedia.db.models import User
from trivedia.errors import NotFoundError, ValidationError, envelope
from trivedia.schemas.user import UserCreate, UserUpdate, public_profile
from trivedia.services.auth_service import AuthService

router = APIRouter(prefix="/admin")

_admin = require_role(Role.ADMIN)


def get_store(db: AsyncSession = Depends(get_db)) -> UserStore:
    return UserStore(db)


async def _get_user_or_404(store: UserStore, user_id: str) -> User:
    user = await store.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.get("/users")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    role: Optional[Role] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    store: UserStore = Depends(get_store),
):
    """List users, newest first, with search and filters."""
    users, total = await store.list_users(
        page=page, limit=limit, search=search, role=role, is_active=is_active
    )
    return envelope(
        data={
            "users": [public_profile(u) for u in users],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }
    )


@router.get("/users/{user_id}")
async def get_user(user_id: str, store: UserStore = Depends(get_store)):
    user = await _get_user_or_404(store, user_id)
    return envelope(data={"user": public_profile(user)})


@router.post("/users", status_code=201)
async def create_user(
    body: UserCreate,
    store: UserStore = Depends(get_store),
    tokens: TokenService = Depends(get_token_service),
):
    """Create a user with an explicit role."""
    user, _ = await AuthService(store, tokens).register(body, role=body.role)
    return envelope(
        message="User created successfully",
        data={"user": public_profile(user)},
    )


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    body: UserUpdate,
    identity: Identity = Depends(_admin),
    store: UserStore = Depends(get_store),
    tokens: TokenService = Depends(get_token_service),
):
    user = await _get_user_or_404(store, user_id)
    await AuthService(store, tokens).check_email_change(user, body.email)
    if str(user.id) == identity.id and body.is_active is False:
        raise ValidationError("Cannot deactivate your own account")
    user = await store.update(
        user,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        role=body.role,
        is_active=body.is_active,
    )
    return envelope(
        message="User updated successfully",
        data={"user": public_profile(user)},
    )


@router.delete("/users/{user_id}")
async def deactivate_user(
    user_id: str,
    identity: Identity = Depends(_admin),
    store: UserStore = Depends(get_store),
):
    """Soft-delete a user by deactivating the account."""
    user = await _get_user_or_404(store, user_id)
    if str(user.id) == identity.id:
        raise ValidationError("Cannot deactivate your own account")
    await store.deactivate(user)
    return envelope(message="User deactivated successfully")


@router.get("/stats")
async def stats(store: UserStore = Depends(get_store)):
    """User counts for the admin dashboard."""
    return envelope(data=await store.stats())
