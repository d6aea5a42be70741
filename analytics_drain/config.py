"""Application configuration via pydantic-settings."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    debug: bool = False
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:3001"]
    # API key (optional): if set, required on read-side routes (never on the drain itself)
    api_key: str = ""

    # Drain authentication
    analytics_drain_secret: str = Field(
        default="",
        validation_alias=AliasChoices("ANALYTICS_DRAIN_SECRET", "VERCEL_ANALYTICS_DRAIN_SECRET"),
    )
    signature_headers: list[str] = ["x-vercel-signature", "x-signature"]
    drain_rate_limit: str = "600/minute"
    body_read_timeout_seconds: float = 10.0

    # Payload extraction
    extract_max_depth: int = 5

    # Store (Postgres)
    database_url: str = ""
    analytics_table: str = "vercel_analytics_events"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    store_timeout_seconds: float = 15.0


settings = Settings()
