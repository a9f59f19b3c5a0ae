"""Auth service: registration, login, refresh, credential changes.

Learn: Service layer separates business logic from HTTP routing.
Routes validate input and shape the envelope; this class decides who
gets a token.

Login failures are deliberately uniform: an unknown email and a wrong
password raise the same AuthError(INVALID_CREDENTIALS), after the same
amount of bcrypt work.
"""

from typing import Optional

import structlog

from trivedia.auth.jwt import Identity, TokenService
from trivedia.auth.password import burn_password_check, hash_password, verify_password
from trivedia.auth.roles import Role
from trivedia.auth.store import DUPLICATE_USER, UserStore
from trivedia.db.models import User
from trivedia.errors import AuthError, AuthErrorKind, NotFoundError, ValidationError
from trivedia.schemas.user import PasswordChange, ProfileUpdate, RegisterRequest

logger = structlog.get_logger()


def identity_of(user: User) -> Identity:
    return Identity(id=str(user.id), role=Role(user.role))


class AuthService:
    """Turns verified credentials into session tokens."""

    def __init__(self, store: UserStore, tokens: TokenService):
        self.store = store
        self.tokens = tokens

    async def register(
        self, body: RegisterRequest, role: Role = Role.VIEWER
    ) -> tuple[User, str]:
        await self.ensure_unique(body.email, body.username)
        user = await self.store.create(
            username=body.username,
            email=body.email,
            password_hash=hash_password(body.password),
            first_name=body.first_name,
            last_name=body.last_name,
            role=role,
        )
        logger.info("auth.registered", user_id=str(user.id), role=user.role.value)
        return user, self.tokens.issue(identity_of(user))

    async def ensure_unique(self, email: str, username: str) -> None:
        if await self.store.email_exists(email) or await self.store.username_exists(username):
            raise ValidationError(DUPLICATE_USER)

    async def login(self, email: str, password: str) -> tuple[User, str]:
        user = await self.store.get_by_email(email)
        if user is None:
            burn_password_check(password)
            logger.info("auth.login_failed", reason="unknown_email")
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

        if not verify_password(password, user.password_hash):
            logger.info("auth.login_failed", reason="wrong_password", user_id=str(user.id))
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

        if not user.is_active:
            logger.info("auth.login_failed", reason="inactive", user_id=str(user.id))
            raise AuthError(AuthErrorKind.ACCOUNT_DISABLED)

        await self.store.record_login(user)
        logger.info("auth.login", user_id=str(user.id))
        return user, self.tokens.issue(identity_of(user))

    async def refresh(self, identity: Identity) -> tuple[User, str]:
        """Re-issue a token, picking up the user's current role.

        Learn: the old token only proves who the caller was. The new
        one reflects the store, so a demoted or deactivated user can't
        keep refreshing their old privileges.
        """
        user = await self.current_user(identity)
        if not user.is_active:
            raise AuthError(AuthErrorKind.ACCOUNT_DISABLED)
        return user, self.tokens.issue(identity_of(user))

    async def current_user(self, identity: Identity) -> User:
        user = await self.store.get_by_id(identity.id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def update_profile(self, identity: Identity, body: ProfileUpdate) -> User:
        user = await self.current_user(identity)
        await self.check_email_change(user, body.email)
        return await self.store.update(
            user,
            first_name=body.first_name,
            last_name=body.last_name,
            email=body.email,
        )

    async def check_email_change(self, user: User, email: Optional[str]) -> None:
        if email and email != user.email and await self.store.email_exists(email, exclude_id=user.id):
            raise ValidationError("Email already registered")

    async def change_password(self, identity: Identity, body: PasswordChange) -> None:
        user = await self.current_user(identity)
        if not verify_password(body.current_password, user.password_hash):
            raise ValidationError("Current password is incorrect")
        await self.store.set_password(user, hash_password(body.new_password))
        logger.info("auth.password_changed", user_id=str(user.id))
