"""
Password hashing, access tokens and role checks for the API.

Every protected handler resolves the caller from the bearer token and checks
the caller's role itself; the client-side route guard is never trusted.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from config import settings
from database import get_db
from schemas import Role

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def sanitize(doc: Dict) -> Dict:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("password_hash", None)
    return d


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def resolve_token(token: str, db: Database) -> Optional[Dict[str, Any]]:
    """Return the sanitized user a token belongs to, or None."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        return None
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        return None
    return sanitize(user)


async def get_current_user(
    token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)
) -> Dict[str, Any]:
    user = resolve_token(token, db)
    if user is None:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    return user


async def get_optional_user(
    token: Optional[str] = Depends(optional_oauth2_scheme), db: Database = Depends(get_db)
) -> Optional[Dict[str, Any]]:
    """Like get_current_user, but anonymous callers and stale tokens resolve to None."""
    if not token:
        return None
    user = resolve_token(token, db)
    if user is None:
        logger.info("Ignoring unresolvable bearer token on optional-auth route")
    return user


def require_role(*roles: Role):
    allowed = {Role(r).value for r in roles}

    async def role_dep(current_user=Depends(get_current_user)):
        if current_user.get("role") not in allowed:
            logger.warning(
                "Denied %s (role=%s); requires one of %s",
                current_user.get("email"),
                current_user.get("role"),
                sorted(allowed),
            )
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user

    return role_dep
