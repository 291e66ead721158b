# Authentication context of the current request
#
# The application supplies a user loader to DynamicAPI, the loader result is stored in
# flask.g.dynapi_user for every request. The loaded user must implement AuthContext.
from typing import Iterable, Optional, Protocol, Set
from flask import g, has_app_context
from .config import get_config


class AuthContext(Protocol):
    def is_super_admin(self) -> bool:
        ...

    def roles(self) -> Set[str]:
        ...

    def contains_any_role(self, roles: Iterable[str]) -> bool:
        ...


class AuthUser:
    """
    AuthContext implementation for users identified by a list of role names
    """

    def __init__(self, identity=None, roles: Iterable[str] = ()) -> None:
        self.identity = identity
        self._roles = set(roles)

    def __repr__(self) -> str:
        return f"<AuthUser {self.identity} {sorted(self._roles)}>"

    def is_super_admin(self) -> bool:
        return get_config("SUPER_ADMIN_ROLE") in self._roles

    def roles(self) -> Set[str]:
        return set(self._roles)

    def contains_any_role(self, roles: Iterable[str]) -> bool:
        return bool(self._roles.intersection(roles))


def current_user() -> Optional[AuthContext]:
    """
    :return: the authenticated user of the current request or None
    """
    if not has_app_context():
        return None
    return g.get("dynapi_user", None)
