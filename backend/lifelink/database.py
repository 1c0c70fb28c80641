from __future__ import annotations

from pathlib import Path
from typing import Literal

import motor.motor_asyncio
from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConfigurationError


BASE_DIR = Path(__file__).resolve().parents[1]
ENV_FILES = [BASE_DIR / ".env.local", BASE_DIR / ".env"]


class Settings(BaseSettings):
    mongodb_url: str = "mongodb://localhost:27017/lifelink"
    mongo_server_timeout_ms: int = 2000
    mongo_connect_timeout_ms: int = 2000
    mongo_socket_timeout_ms: int = 2000
    twilio_sid: str | None = None
    twilio_token: str | None = None
    twilio_phone: str | None = None
    eligibility_cooldown_days: int = 90
    match_fanout_limit: int = 100
    search_default_limit: int = 20
    notify_concurrency: int = 10
    dispatch_max_attempts: int = 3
    dispatch_backoff_seconds: float = 0.5
    dispatch_backoff_max_seconds: float = 8.0
    dispatch_retry_rounds: int = 3
    directory_query_attempts: int = 3
    fulfillment_policy: Literal["threshold", "manual"] = "threshold"
    sweep_interval_seconds: float = 60.0
    sweeper_enabled: bool = True
    transition_max_attempts: int = 25

    model_config = SettingsConfigDict(
        env_file=[str(path) for path in ENV_FILES],
        case_sensitive=False,
        env_prefix="",
        extra="ignore",
    )


def get_settings() -> Settings:
    return Settings()


settings = get_settings()
FALLBACK_MONGO_URL = "mongodb://localhost:27017/lifelink"
DEFAULT_DATABASE = "lifelink"


def _create_client(uri: str) -> motor.motor_asyncio.AsyncIOMotorClient:
    connect_kwargs = {
        "serverSelectionTimeoutMS": settings.mongo_server_timeout_ms,
        "connectTimeoutMS": settings.mongo_connect_timeout_ms,
        "socketTimeoutMS": settings.mongo_socket_timeout_ms,
        "tz_aware": False,
    }
    try:
        return motor.motor_asyncio.AsyncIOMotorClient(uri, **connect_kwargs)
    except ConfigurationError as exc:
        if uri == FALLBACK_MONGO_URL:
            raise
        logger.warning(
            "MongoDB DNS resolution failed for {} ({}). Falling back to local Mongo at {}.",
            uri,
            exc,
            FALLBACK_MONGO_URL,
        )
        return motor.motor_asyncio.AsyncIOMotorClient(FALLBACK_MONGO_URL, **connect_kwargs)


client = _create_client(settings.mongodb_url)
db = client.get_default_database(default=DEFAULT_DATABASE)


async def ensure_indexes(database) -> None:
    """Create the indexes the engine relies on for idempotency and lookups.

    The two unique compound indexes are the at-most-once boundaries: one
    notification and one response per (requisition, donor) pair.
    """
    notifications = database.get_collection("donor_notifications")
    await notifications.create_index(
        [("requisition_id", ASCENDING), ("donor_id", ASCENDING)], unique=True, name="requisition_donor_unique"
    )
    await notifications.create_index([("donor_id", ASCENDING), ("created_at", DESCENDING)])
    await notifications.create_index([("retry_eligible", ASCENDING)])

    responses = database.get_collection("donor_responses")
    await responses.create_index(
        [("requisition_id", ASCENDING), ("donor_id", ASCENDING)], unique=True, name="requisition_donor_unique"
    )
    await responses.create_index([("requisition_id", ASCENDING), ("response", ASCENDING)])

    requisitions = database.get_collection("requisitions")
    await requisitions.create_index([("status", ASCENDING), ("required_by_date", ASCENDING)])
    await requisitions.create_index([("requester_id", ASCENDING), ("created_at", DESCENDING)])

    donors = database.get_collection("donors")
    await donors.create_index([("is_blood_donor", ASCENDING), ("blood_group", ASCENDING)])

    donations = database.get_collection("blood_donations")
    await donations.create_index([("donor_id", ASCENDING), ("donation_date", DESCENDING)])
