"""Session token issue and verification.

Learn: JWT (JSON Web Token) provides stateless authentication. A token
carries the user id (sub), role, issued-at and expiry, signed (HS256)
with one process-wide secret. Verification is pure computation and
never touches the database.

Expiry is checked here against an injectable clock rather than by
PyJWT, so "now >= exp" is enforced exactly and can be tested without
sleeping.

There is no revocation list: a token stays valid until it expires.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from trivedia.auth.roles import Role
from trivedia.config import settings
from trivedia.errors import AuthError, AuthErrorKind

Clock = Callable[[], datetime]

_REQUIRED_CLAIMS = ["sub", "role", "iat", "exp"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller: who they are and what they may do."""

    id: str
    role: Role


class TokenService:
    """Issues and verifies signed, time-bounded session tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(hours=24),
        clock: Optional[Clock] = None,
    ):
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        if lifetime < timedelta(seconds=1):
            # Claims are whole seconds; anything shorter gives exp == iat.
            raise ValueError("Token lifetime must be at least one second")
        self._secret = secret
        self.algorithm = algorithm
        self.lifetime = lifetime
        self._clock = clock or _utcnow

    @classmethod
    def from_settings(cls) -> "TokenService":
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            lifetime=timedelta(hours=settings.token_lifetime_hours),
        )

    def issue(self, identity: Identity) -> str:
        """Create a signed token for the identity, valid for `lifetime`."""
        now = self._clock()
        payload = {
            "sub": str(identity.id),
            "role": Role(identity.role).value,
            "iat": int(now.timestamp()),
            "exp": int((now + self.lifetime).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Identity:
        """Verify and decode a token.

        Raises AuthError with kind INVALID_SIGNATURE, EXPIRED or MALFORMED.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": _REQUIRED_CLAIMS,
                },
            )
        except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError) as e:
            raise AuthError(AuthErrorKind.INVALID_SIGNATURE, str(e)) from e
        except jwt.InvalidTokenError as e:
            raise AuthError(AuthErrorKind.MALFORMED, str(e)) from e

        try:
            issued_at = int(payload["iat"])
            expires_at = int(payload["exp"])
            role = Role(payload["role"])
            subject = str(payload["sub"])
        except (TypeError, ValueError) as e:
            raise AuthError(AuthErrorKind.MALFORMED, str(e)) from e

        if not subject or expires_at <= issued_at:
            raise AuthError(AuthErrorKind.MALFORMED, "Inconsistent claims")

        if self._clock().timestamp() >= expires_at:
            raise AuthError(AuthErrorKind.EXPIRED, "Token has expired")

        return Identity(id=subject, role=role)
