from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import motor.motor_asyncio
from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo.errors import ConfigurationError
from pymongo.uri_parser import parse_uri


BASE_DIR = Path(__file__).resolve().parents[1]
ENV_FILES = [BASE_DIR / ".env.local", BASE_DIR / ".env"]
DEFAULT_DATABASE = "donormatch"
FALLBACK_MONGO_URL = f"mongodb://localhost:27017/{DEFAULT_DATABASE}"


class Settings(BaseSettings):
    mongodb_url: str = FALLBACK_MONGO_URL
    mongo_server_timeout_ms: int = 2000
    mongo_connect_timeout_ms: int = 2000
    mongo_socket_timeout_ms: int = 2000

    # tokens are minted by the identity service with the same secret
    jwt_secret: str = "supersecret"
    jwt_algorithm: str = "HS256"
    jwt_expires_min: int = 60

    twilio_sid: str | None = None
    twilio_token: str | None = None
    twilio_phone: str | None = None
    coordinator_phone: str | None = None

    donation_interval_days: int = Field(default=56, ge=0)
    candidate_limit: int = Field(default=25, ge=1)
    finder_chunk_size: int = Field(default=200, ge=1)

    model_config = SettingsConfigDict(
        env_file=[str(path) for path in ENV_FILES],
        case_sensitive=False,
        env_prefix="",
    )

    def mongo_client_options(self) -> Dict[str, Any]:
        return {
            "serverSelectionTimeoutMS": self.mongo_server_timeout_ms,
            "connectTimeoutMS": self.mongo_connect_timeout_ms,
            "socketTimeoutMS": self.mongo_socket_timeout_ms,
        }


def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def _create_client(uri: str, options: Dict[str, Any]) -> motor.motor_asyncio.AsyncIOMotorClient:
    try:
        return motor.motor_asyncio.AsyncIOMotorClient(uri, **options)
    except ConfigurationError as exc:
        if uri == FALLBACK_MONGO_URL:
            raise
        logger.warning("Mongo URI {} rejected ({}); using {}", uri, exc, FALLBACK_MONGO_URL)
        return motor.motor_asyncio.AsyncIOMotorClient(FALLBACK_MONGO_URL, **options)


def _database_name(uri: str | None) -> str:
    if not uri:
        return DEFAULT_DATABASE
    try:
        return parse_uri(uri).get("database") or DEFAULT_DATABASE
    except Exception as exc:  # pragma: no cover - malformed uri
        logger.warning("Cannot read database name from {} ({}); using {}", uri, exc, DEFAULT_DATABASE)
        return DEFAULT_DATABASE


client = _create_client(settings.mongodb_url, settings.mongo_client_options())
db = client.get_database(_database_name(settings.mongodb_url))
