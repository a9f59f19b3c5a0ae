"""Password hashing utilities.

Learn: Uses bcrypt for secure password hashing. bcrypt automatically
handles salting, and checkpw compares in constant time. The work
factor (rounds=12) takes ~100ms per hash on modern hardware.

Login must not reveal whether an email is registered, so when no user
matches we still run a bcrypt check against a throwaway hash. Both
failure paths then cost the same.
"""

import bcrypt

BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    """Hash a password with bcrypt.

    Passwords are truncated to 72 bytes (bcrypt's limit).
    """
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash."""
    try:
        pw_bytes = password.encode("utf-8")[:72]
        return bcrypt.checkpw(pw_bytes, password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


_DUMMY_HASH = hash_password("trivedia-timing-equaliser")


def burn_password_check(password: str) -> None:
    """Spend one bcrypt comparison's worth of time and discard the result."""
    verify_password(password, _DUMMY_HASH)
