"""
Configuration and settings for the sync functions and the integration worker.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings; field names map to upper-case env vars."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Document store: Firestore unless a SQL database is configured
    database_url: Optional[str] = Field(default=None)

    # Realtime Database holding proxies
    firebase_database_url: Optional[str] = Field(default=None)

    # Firebase Storage bucket; the project default when unset
    storage_bucket: Optional[str] = Field(default=None)

    # S3-compatible storage (Tencent COS), used instead when a bucket is set
    cos_endpoint: Optional[str] = Field(default=None)
    cos_region: Optional[str] = Field(default=None)
    cos_bucket: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Queue (Redis)
    redis_url: Optional[str] = Field(default=None)
    redis_queue_key: str = Field(default="inspections:deficiency-events")

    # Trello card service
    trello_api_key: Optional[str] = Field(default=None)
    trello_api_token: Optional[str] = Field(default=None)
    trello_api_url: str = Field(default="https://api.trello.com/1")

    # Slack chat service
    slack_bot_token: Optional[str] = Field(default=None)
    slack_api_url: str = Field(default="https://slack.com/api")

    # Links and push notification styling
    client_app_url: str = Field(default="http://localhost:3000")
    push_icon_url: str = Field(default="")

    request_timeout_seconds: float = Field(default=10.0)

    def deficiency_url(self, property_id: str, deficiency_id: str) -> str:
        return (
            f"{self.client_app_url.rstrip('/')}/properties/{property_id}"
            f"/deficient-items/{deficiency_id}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
