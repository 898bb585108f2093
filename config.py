"""
Application settings for the Ratings Platform.

Values are read from environment variables or a `.env` file. Both the API
server and the Python client read from the same settings object.
"""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed access to environment configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    MONGO_URL: str = "mongodb://localhost:27017"
    """Connection string of the MongoDB server."""

    DATABASE_NAME: str = "ratings_platform"
    """Database holding the user, store and rating collections."""

    SECRET_KEY: str = "supersecretkey"
    """Key used to sign access tokens."""

    ALGORITHM: str = "HS256"
    """JWT signing algorithm."""

    ACCESS_TOKEN_EXPIRE_MINUTES: int = 24 * 60
    """Lifetime of an issued access token."""

    CORS_ORIGINS: List[str] = ["*"]

    HOST: str = "0.0.0.0"
    """Interface the API server binds to."""

    PORT: int = 8000

    API_BASE_URL: str = "http://localhost:8000"
    """Base URL the client uses to reach the API."""

    SESSION_FILE: str = ".session.json"
    """File the client persists its session keys to."""

    LOG_LEVEL: str = "INFO"


settings = Settings()
