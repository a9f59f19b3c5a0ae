"""Credential store: persistence for User records.

Learn: The auth core only needs a narrow view of users (look up by
email/id, create, record a login, change a password). The admin
listing and stats queries live here too so that nothing else in the
app builds User queries by hand.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trivedia.auth.roles import Role
from trivedia.db.models import User, utcnow
from trivedia.errors import ValidationError

DUPLICATE_USER = "User with this email or username already exists"


def _parse_id(user_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(user_id))
    except ValueError:
        return None


class UserStore:
    """Reads and writes User rows through one AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Lookups ────────────────────────────────────────

    async def get_by_id(self, user_id: str) -> Optional[User]:
        uid = _parse_id(user_id)
        if uid is None:
            return None
        return await self.db.get(User, uid)

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()

    async def email_exists(self, email: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        q = select(User.id).where(User.email == email)
        if exclude_id is not None:
            q = q.where(User.id != exclude_id)
        result = await self.db.execute(q)
        return result.first() is not None

    async def username_exists(self, username: str) -> bool:
        result = await self.db.execute(select(User.id).where(User.username == username))
        return result.first() is not None

    # ─── Writes ─────────────────────────────────────────

    async def create(
        self,
        username: str,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        role: Role = Role.VIEWER,
    ) -> User:
        user = User(
            username=username,
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            role=role,
        )
        self.db.add(user)
        await self._commit_unique()
        return user

    async def update(self, user: User, **fields) -> User:
        for name, value in fields.items():
            if value is not None:
                setattr(user, name, value)
        await self._commit_unique()
        return user

    async def _commit_unique(self) -> None:
        """Commit, turning a unique-constraint violation into a 400.

        Learn: the exists-checks in AuthService give a friendly error in
        the common case, but two concurrent requests can both pass them.
        The database constraint is what actually decides.
        """
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ValidationError(DUPLICATE_USER) from e

    async def record_login(self, user: User) -> None:
        user.last_login = utcnow()
        await self.db.commit()

    async def set_password(self, user: User, password_hash: str) -> None:
        user.password_hash = password_hash
        await self.db.commit()

    async def deactivate(self, user: User) -> User:
        user.is_active = False
        await self.db.commit()
        return user

    # ─── Admin queries ──────────────────────────────────

    async def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        role: Optional[Role] = None,
        is_active: Optional[bool] = None,
    ) -> tuple[list[User], int]:
        """One page of users (newest first) plus the total matching count."""
        conditions = []
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                or_(
                    func.lower(User.first_name).like(pattern),
                    func.lower(User.last_name).like(pattern),
                    func.lower(User.email).like(pattern),
                    func.lower(User.username).like(pattern),
                )
            )
        if role is not None:
            conditions.append(User.role == role)
        if is_active is not None:
            conditions.append(User.is_active == is_active)

        total = await self.db.scalar(
            select(func.count()).select_from(User).where(*conditions)
        )
        q = (
            select(User)
            .where(*conditions)
            .order_by(User.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(q)
        return list(result.scalars().all()), total or 0

    async def count(self, *conditions) -> int:
        total = await self.db.scalar(
            select(func.count()).select_from(User).where(*conditions)
        )
        return total or 0

    async def stats(self, now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        total = await self.count()
        recent = await self.count(User.created_at >= now - timedelta(days=7))
        return {
            "totalUsers": total,
            "activeUsers": await self.count(User.is_active.is_(True)),
            "adminUsers": await self.count(User.role == Role.ADMIN),
            "editorUsers": await self.count(User.role == Role.EDITOR),
            "viewerUsers": await self.count(User.role == Role.VIEWER),
            "recentUsers": recent,
            "recentLogins": await self.count(User.last_login >= now - timedelta(days=1)),
            "userGrowthRate": round(recent / total * 100) if total else 0,
        }
