"""
Route guarding for the client.

`RouteGuard.resolve` is recomputed on every navigation: while the session
cache is still hydrating it yields `Waiting`; without a session it redirects
to the login page, remembering where the user was headed; otherwise the role
authorizer decides between rendering and redirecting to the role's home.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple, Union

from roles import LOGIN_PATH, Allowed, Denied, Unauthenticated, authorize
from schemas import Role
from session import SessionCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Waiting:
    pass


@dataclass(frozen=True)
class Redirect:
    to: str
    from_location: Optional[str] = None


@dataclass(frozen=True)
class Render:
    path: str


@dataclass(frozen=True)
class NotFound:
    path: str


View = Union[Waiting, Redirect, Render, NotFound]

PUBLIC = "public"

# path -> roles allowed to see it, or PUBLIC
ROUTES: Dict[str, Union[str, Tuple[Role, ...]]] = {
    LOGIN_PATH: PUBLIC,
    "/admin": (Role.ADMIN,),
    "/admin/users": (Role.ADMIN,),
    "/admin/stores": (Role.ADMIN,),
    "/admin/settings": (Role.ADMIN,),
    "/user": (Role.USER,),
    "/user/ratings": (Role.USER,),
    "/user/settings": (Role.USER,),
    "/owner": (Role.OWNER,),
    "/owner/ratings": (Role.OWNER,),
    "/owner/settings": (Role.OWNER,),
}

ROOT_REDIRECT = LOGIN_PATH


class RouteGuard:
    def __init__(self, cache: SessionCache):
        self.cache = cache

    def resolve(self, location: str, allowed_roles: Optional[Iterable[Role]] = None) -> View:
        if self.cache.is_loading():
            return Waiting()
        decision = authorize(self.cache.get(), allowed_roles)
        if isinstance(decision, Unauthenticated):
            return Redirect(LOGIN_PATH, from_location=location)
        if isinstance(decision, Denied):
            logger.info("Redirecting away from %s to %s", location, decision.redirect_to)
            return Redirect(decision.redirect_to)
        if isinstance(decision, Allowed):
            return Render(location)
        raise TypeError(f"Unexpected decision: {decision!r}")

    def navigate(self, path: str) -> View:
        """Resolve a path through the application's route table."""
        if path == "/":
            return Redirect(ROOT_REDIRECT)
        rule = ROUTES.get(path)
        if rule is None:
            return NotFound(path)
        if rule == PUBLIC:
            return Render(path)
        return self.resolve(path, rule)
