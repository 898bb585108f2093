"""
Role decisions for navigation.

`authorize` maps a session and an optional set of allowed roles to one of
three decisions. It has no side effects; the route guard turns decisions
into views.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional, Union

from schemas import Role

if TYPE_CHECKING:
    from session import Session

LOGIN_PATH = "/auth"


@dataclass(frozen=True)
class Unauthenticated:
    pass


@dataclass(frozen=True)
class Allowed:
    pass


@dataclass(frozen=True)
class Denied:
    redirect_to: str


Decision = Union[Unauthenticated, Allowed, Denied]


def home_path(role: Role) -> str:
    """Landing page of a role. Unknown values raise ValueError."""
    if role is Role.ADMIN:
        return "/admin"
    if role is Role.OWNER:
        return "/owner"
    if role is Role.USER:
        return "/user"
    raise ValueError(f"Unknown role: {role!r}")


def authorize(session: Optional["Session"], allowed_roles: Optional[Iterable[Role]] = None) -> Decision:
    if session is None:
        return Unauthenticated()
    if allowed_roles is None:
        return Allowed()
    role = session.user.role
    if role in set(allowed_roles):
        return Allowed()
    return Denied(redirect_to=home_path(role))
