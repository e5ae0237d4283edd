"""Application configuration using Pydantic Settings.

This module provides type-safe configuration management with automatic
environment variable loading and validation.
"""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MongoConfig(BaseSettings):
    """MongoDB configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="MONGO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    uri: str = Field(
        default="mongodb://localhost:27017", description="MongoDB connection URI"
    )
    db_name: str = Field(default="trackme", description="Database name")

    # Collection names
    users_collection: str = Field(
        default="users",
        description="Collection for registered users",
    )
    api_keys_collection: str = Field(
        default="api_keys",
        description="Collection for hashed API keys",
    )
    parkings_collection: str = Field(
        default="parkings",
        description="Collection for parking records",
    )
    counters_collection: str = Field(
        default="counters",
        description="Collection holding integer id sequences",
    )


class AuthConfig(BaseSettings):
    """Session token and password hashing settings."""

    model_config = SettingsConfigDict(
        env_prefix="JWT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    secret: str = Field(..., description="Secret used to sign session tokens")
    algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    expires_days: int = Field(
        default=7, description="Lifetime of a session token in days"
    )
    bcrypt_rounds: int = Field(
        default=12, description="bcrypt cost factor for password hashes"
    )


class TimerConfig(BaseSettings):
    """Parking countdown timer settings."""

    model_config = SettingsConfigDict(
        env_prefix="TIMER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_duration: int = Field(
        default=10, description="Countdown length in seconds when none is given"
    )
    max_duration: int = Field(
        default=3600, description="Longest countdown a client may request"
    )
    store_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound on database calls made by the timer service",
    )


class AppConfig(BaseSettings):
    """General application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    api_key_header_name: str = Field(
        default="X-API-Key",
        description="HTTP header name used to pass the API key",
    )
    api_key_tag: str = Field(
        default="tk_live_",
        description="Literal tag prepended to every generated API key",
    )
    cors_origins: list[str] = Field(
        default=["*"],
        description="Origins allowed to call the API from a browser",
    )


class Settings(BaseSettings):
    """Main application settings combining all configuration sections."""

    # Load from .env
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    mongo: MongoConfig = Field(default_factory=MongoConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    timer: TimerConfig = Field(default_factory=TimerConfig)
    app: AppConfig = Field(default_factory=AppConfig)

    def configure_logging(self) -> None:
        """Configure application logging based on settings."""
        numeric_level = getattr(logging, self.app.log_level.upper(), None)
        if not isinstance(numeric_level, int):
            numeric_level = logging.INFO

        logging.basicConfig(
            level=numeric_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Quiet noisy third-party loggers
        for noisy_logger in (
            "pymongo",
            "pymongo.ocsp_support",
            "pymongo.pool",
            "pymongo.topology",
        ):
            logging.getLogger(noisy_logger).setLevel(logging.WARNING)


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance.

    Returns:
        Settings instance with loaded configuration.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.configure_logging()
    return _settings
