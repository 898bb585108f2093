"""
Database Schemas and API models for the Rating Platform

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (User -> "user").

We will use these collections:
- user: system users (admin, owner, user)
- store: registered stores, at most one per owner
- rating: user ratings for stores, at most one per user and store

Request and response models use camelCase on the wire (storeId, ownerId) while
documents keep snake_case field names.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError


class Role(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    USER = "user"


PASSWORD_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'

Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=20, max_length=60)]
Address = Annotated[str, StringConstraints(strip_whitespace=True, max_length=400)]
Score = Annotated[int, Field(strict=True, ge=1, le=5)]
Comment = Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def check_password_policy(password: str) -> str:
    """8-16 chars, at least one uppercase letter and one special character."""
    if not (8 <= len(password) <= 16):
        raise PydanticCustomError("password_policy", "Password must be 8-16 characters long")
    if not any(c.isupper() for c in password):
        raise PydanticCustomError(
            "password_policy", "Password must include at least one uppercase letter"
        )
    if not any(c in PASSWORD_SPECIAL_CHARS for c in password):
        raise PydanticCustomError(
            "password_policy", "Password must include at least one special character"
        )
    return password


def format_validation_errors(errors: List[Dict[str, Any]]) -> str:
    """Collapse pydantic error entries into a single user-facing message."""
    messages = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        msg = err.get("msg", "Invalid value")
        messages.append(f"{loc[-1]}: {msg}" if loc else msg)
    return "; ".join(messages) or "Invalid request"


def validation_message(exc: ValidationError) -> str:
    return format_validation_errors(exc.errors())


# Collections

class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    name: Name
    email: EmailStr
    address: Optional[Address] = None
    password_hash: str = Field(..., description="BCrypt hash of password")
    role: Role = Field(Role.USER)
    created_at: datetime = Field(default_factory=utcnow)

    _lower_email = field_validator("email", mode="before")(normalize_email)


class Store(BaseModel):
    owner_id: str = Field(..., description="Reference to user _id (owner)")
    name: Name
    email: EmailStr
    address: Optional[Address] = None
    created_at: datetime = Field(default_factory=utcnow)

    _lower_email = field_validator("email", mode="before")(normalize_email)


class Rating(BaseModel):
    user_id: str = Field(...)
    store_id: str = Field(...)
    rating: Score
    comment: Optional[Comment] = None
    created_at: datetime = Field(default_factory=utcnow)


# Request/Response Models

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignupRequest(ApiModel):
    name: Name
    email: EmailStr
    password: str
    address: Optional[Address] = None
    role: Role = Role.USER

    _lower_email = field_validator("email", mode="before")(normalize_email)
    _password_policy = field_validator("password")(check_password_policy)


class CreateUserRequest(SignupRequest):
    role: Role


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    _lower_email = field_validator("email", mode="before")(normalize_email)


class UpdatePasswordRequest(ApiModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    _password_policy = field_validator("new_password")(check_password_policy)


class CreateStoreRequest(ApiModel):
    name: Name
    email: EmailStr
    address: Optional[Address] = None

    _lower_email = field_validator("email", mode="before")(normalize_email)


class AdminCreateStoreRequest(CreateStoreRequest):
    owner_id: str


class AddRatingRequest(ApiModel):
    store_id: str
    rating: Score
    comment: Optional[Comment] = None


class UpdateRatingRequest(ApiModel):
    rating: Score
    comment: Optional[Comment] = None


class SessionUser(ApiModel):
    id: str
    name: str
    email: str
    role: Role


class PublicUser(SessionUser):
    address: Optional[str] = None


class LoginResponse(ApiModel):
    user: SessionUser
    token: str


class UsersResponse(ApiModel):
    users: List[PublicUser]


class StatsResponse(ApiModel):
    total_users: int
    total_stores: int
    total_ratings: int


class RatingOut(ApiModel):
    id: str
    store_id: str
    user_id: str
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


class StoreOut(ApiModel):
    id: str
    name: str
    email: str
    address: Optional[str] = None
    owner_id: str
    average_rating: Optional[float] = None
    rating_count: int = 0


class StoreListItem(StoreOut):
    my_rating: Optional[int] = None


class OwnerStoreOut(StoreOut):
    ratings: List[RatingOut] = Field(default_factory=list)


class OwnerRater(ApiModel):
    user_name: str
    user_email: str
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


class MyRatingOut(RatingOut):
    store_name: Optional[str] = None
