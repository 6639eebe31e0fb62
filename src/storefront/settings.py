"""
storefront.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide secrets from repr/logging (e.g., JWT secret).
- Hold workflow policy knobs (return window, assignment retries, agent availability trigger).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Env-driven configuration; defaults are safe for local dev.
    """

    model_config = SettingsConfigDict(env_prefix="STOREFRONT_", case_sensitive=False)

    # Environment controls toggle behavior like auto-init DB tables.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "storefront"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Auth
    jwt_alg: str = "HS256"
    jwt_issuer: str = "storefront"
    jwt_audience: str = "storefront-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)
    token_ttl_minutes: int = Field(default=60, ge=1)

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./storefront.db"
    # SQLite only: how long a writer waits for the database lock.
    db_busy_timeout_seconds: float = Field(default=15.0, gt=0)

    # Order lifecycle
    return_window_days: int = Field(default=14, ge=0)
    auto_assign_on_confirm: bool = False

    # Delivery assignment
    assignment_max_retries: int = Field(default=3, ge=1)
    agent_unavailability_trigger: Literal["manual", "heartbeat"] = "manual"
    agent_heartbeat_timeout_seconds: int = Field(default=120, ge=1)

    # Ticket lifecycle
    max_ticket_reopens: int = Field(default=1, ge=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Policy values live here rather than in the lifecycle modules so operators can tune
# them per environment without a code change.
