"""
Client-side session handling.

A `SessionCache` holds the current session, mirrored into persisted storage
under two keys (``auth_user`` and ``token``). It starts in the loading state,
is hydrated once from storage, and accepts writes from a single writer. The
`SessionIssuer` is that writer: it logs in, registers and logs out against
the API and keeps the cache in step.

Expected failures (bad credentials, validation, unreachable server) come back
as an `AuthResult` carrying an error message; nothing here raises for them.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

import httpx
from pydantic import BaseModel, ValidationError

from config import settings
from schemas import (
    LoginRequest,
    Role,
    SessionUser,
    SignupRequest,
    UpdatePasswordRequest,
    validation_message,
)

logger = logging.getLogger(__name__)

USER_KEY = "auth_user"
TOKEN_KEY = "token"

LOGIN_FAILED = "Login failed"
REGISTRATION_FAILED = "Registration failed"
LOGIN_SUPERSEDED = "Login superseded"
NOT_AUTHENTICATED = "Not authenticated"


class Session(BaseModel):
    user: SessionUser
    token: str


class SessionStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemorySessionStorage:
    def __init__(self, items: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class FileSessionStorage:
    """String key/value pairs kept in a JSON file, surviving restarts."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def get_item(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class SessionWriter:
    """The only handle allowed to change a SessionCache."""

    def __init__(self, cache: "SessionCache"):
        self._cache = cache

    def write(self, session: Session) -> None:
        storage = self._cache.storage
        storage.set_item(USER_KEY, session.user.model_dump_json())
        storage.set_item(TOKEN_KEY, session.token)
        self._cache._session = session

    def clear(self) -> None:
        storage = self._cache.storage
        storage.remove_item(TOKEN_KEY)
        storage.remove_item(USER_KEY)
        self._cache._session = None


class SessionCache:
    def __init__(self, storage: SessionStorage):
        self.storage = storage
        self._session: Optional[Session] = None
        self._loading = True
        self._writer: Optional[SessionWriter] = None

    def hydrate(self) -> None:
        """Load the persisted session. Only the first call has any effect."""
        if not self._loading:
            return
        self._session = self._read_persisted()
        self._loading = False

    def _read_persisted(self) -> Optional[Session]:
        raw_user = self.storage.get_item(USER_KEY)
        token = self.storage.get_item(TOKEN_KEY)
        if raw_user is None and token is None:
            return None
        if raw_user is None or not token:
            logger.warning("Discarding partial persisted session")
            return None
        try:
            return Session(user=SessionUser.model_validate_json(raw_user), token=token)
        except ValidationError as e:
            logger.warning("Discarding invalid persisted session: %s", e.errors()[0].get("msg"))
            return None

    def get(self) -> Optional[Session]:
        return self._session

    def is_loading(self) -> bool:
        return self._loading

    def claim_writer(self) -> SessionWriter:
        if self._writer is not None:
            raise RuntimeError("SessionCache already has a writer")
        self._writer = SessionWriter(self)
        return self._writer


@dataclass
class AuthResult:
    session: Optional[Session] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def error_from(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return default


def transport_error(exc: httpx.HTTPError) -> str:
    return str(exc) or exc.__class__.__name__


class SessionIssuer:
    """
    Logs users in and out against the API and owns the session cache.

    Each login or logout bumps a generation counter. A login response is only
    written when no other session change was issued while it was in flight.
    """

    def __init__(self, http: httpx.AsyncClient, cache: SessionCache):
        self.http = http
        self.cache = cache
        self._writer = cache.claim_writer()
        self._generation = 0

    def _auth_headers(self) -> Dict[str, str]:
        session = self.cache.get()
        return {"Authorization": f"Bearer {session.token}"} if session else {}

    async def login(self, email: str, password: str) -> AuthResult:
        try:
            payload = LoginRequest(email=email, password=password)
        except ValidationError as e:
            return AuthResult(error=validation_message(e))
        self._generation += 1
        generation = self._generation
        try:
            response = await self.http.post("/auth/login", json=payload.model_dump(mode="json"))
        except httpx.HTTPError as e:
            logger.warning("Login request failed: %s", e)
            return AuthResult(error=transport_error(e))
        if generation != self._generation:
            logger.info("Discarding stale login response for %s", payload.email)
            return AuthResult(error=LOGIN_SUPERSEDED)
        if response.is_error:
            return AuthResult(error=error_from(response, LOGIN_FAILED))
        try:
            data = response.json()
            session = Session(user=SessionUser.model_validate(data["user"]), token=data["token"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Malformed login response: %s", e)
            return AuthResult(error=LOGIN_FAILED)
        self._writer.write(session)
        logger.info("Logged in as %s (%s)", session.user.email, session.user.role.value)
        return AuthResult(session=session)

    async def sign_up(
        self,
        email: str,
        password: str,
        name: str,
        address: Optional[str],
        role: Union[Role, str],
    ) -> AuthResult:
        """Register an account. The caller still has to log in afterwards."""
        try:
            payload = SignupRequest(name=name, email=email, password=password, address=address, role=role)
        except ValidationError as e:
            return AuthResult(error=validation_message(e))
        # Only admin accounts need an admin caller; other signups go anonymous.
        headers = self._auth_headers() if payload.role is Role.ADMIN else {}
        try:
            response = await self.http.post(
                "/auth/register",
                json=payload.model_dump(mode="json", by_alias=True, exclude_none=True),
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.warning("Registration request failed: %s", e)
            return AuthResult(error=transport_error(e))
        if response.is_error:
            return AuthResult(error=error_from(response, REGISTRATION_FAILED))
        return AuthResult()

    async def update_password(self, current_password: str, new_password: str) -> AuthResult:
        if self.cache.get() is None:
            return AuthResult(error=NOT_AUTHENTICATED)
        try:
            payload = UpdatePasswordRequest(current_password=current_password, new_password=new_password)
        except ValidationError as e:
            return AuthResult(error=validation_message(e))
        try:
            response = await self.http.put(
                "/auth/password",
                json=payload.model_dump(mode="json", by_alias=True),
                headers=self._auth_headers(),
            )
        except httpx.HTTPError as e:
            return AuthResult(error=transport_error(e))
        if response.is_error:
            return AuthResult(error=error_from(response, "Password update failed"))
        return AuthResult(session=self.cache.get())

    def logout(self) -> None:
        self._generation += 1
        self._writer.clear()


def open_session_cache(path: Union[str, Path, None] = None) -> SessionCache:
    """Hydrated cache backed by the configured session file."""
    cache = SessionCache(FileSessionStorage(path or settings.SESSION_FILE))
    cache.hydrate()
    return cache


def api_client(base_url: Optional[str] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=base_url or settings.API_BASE_URL)
