"""Settings for the rewards ledger, loaded from REWARDS_* environment variables."""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="REWARDS_",
        case_sensitive=False,
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./rewards.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = Field(default=False, description="Echo emitted SQL")
    auto_create_schema: bool = Field(
        default=True,
        description="Create tables and seed the task catalog on startup",
    )

    # Referral bonuses
    bonus_to_referrer: int = Field(default=50, ge=0, description="Points paid to the referrer")
    bonus_to_referred: int = Field(default=10, ge=0, description="Points paid to the referred user")

    # Leaderboard
    leaderboard_default_limit: int = Field(default=10, ge=1)
    leaderboard_max_limit: int = Field(default=100, ge=1)

    # Auth
    jwt_secret: SecretStr = Field(default=SecretStr("dev-secret"), description="HS256 signing secret")
    jwt_algorithm: str = Field(default="HS256")
    jwt_ttl_minutes: int = Field(default=24 * 60, ge=1)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")


settings = Settings()
