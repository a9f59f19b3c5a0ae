"""Role hierarchy: the single source of truth for authorization.

Learn: Roles form a total order: admin > editor > viewer. Every
permission check in the codebase goes through satisfies(); routes
never compare role names or numbers themselves.
"""

import enum
from typing import Union


class Role(str, enum.Enum):
    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"


_RANKS = {
    Role.VIEWER: 1,
    Role.EDITOR: 2,
    Role.ADMIN: 3,
}


def rank(role: Union[Role, str]) -> int:
    """Position of a role in the hierarchy. Raises ValueError for unknown roles."""
    return _RANKS[Role(role)]


def satisfies(actual: Union[Role, str], required: Union[Role, str]) -> bool:
    """True if `actual` is at least as privileged as `required`."""
    return rank(actual) >= rank(required)
