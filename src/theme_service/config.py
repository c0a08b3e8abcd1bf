import logging
from typing import Literal

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuration settings for the theme token service.
    Settings are loaded from environment variables and/or a .env file.
    """

    # --- General Service Settings ---
    SERVICE_NAME: str = Field(default="theme_service", description="Name of the service.")
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level for the service."
    )

    # --- Storage Settings ---
    STORE_BACKEND: Literal["memory", "redis"] = Field(
        default="memory",
        description="Persistence collaborator used for theme records.",
    )
    REDIS_URL: RedisDsn = Field(
        default="redis://localhost:6379/0",
        description="URL for the Redis server holding theme records.",
    )
    REDIS_KEY_PREFIX: str = Field(
        default="themes",
        description="Namespace prepended to every Redis key written by the store.",
    )
    REDIS_LOCK_TIMEOUT: float = Field(
        default=10.0,
        description="Seconds before an owner lock held by a crashed writer expires.",
    )
    REDIS_LOCK_BLOCKING_TIMEOUT: float = Field(
        default=5.0,
        description="Seconds a writer waits for an owner lock before giving up.",
    )

    # --- Theme Settings ---
    OWNER_ID: str = Field(
        default="OWNER",
        description="Identity seeded with a default theme at startup.",
    )
    DEFAULT_THEME_NAME: str = Field(
        default="Plain",
        description="Name of the theme created when an owner has none.",
    )
    THEME_NAME_MAX_LENGTH: int = Field(
        default=64,
        description="Maximum number of characters in a theme name.",
    )
    DEFAULT_COLOR_MODE: Literal["light", "dark", "hc"] = Field(
        default="light",
        description="Appearance mode projected into --bg/--text/--muted/--accent.",
    )

    model_config = SettingsConfigDict(
        env_file=".env",  # Load .env file if present
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra environment variables
        case_sensitive=False,
    )


# Initialize settings globally for easy access
settings = Settings()

# Configure logging based on settings
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(settings.SERVICE_NAME)

logger.debug(f"Theme service settings loaded: {settings.model_dump()}")

if __name__ == "__main__":
    # Print the loaded settings, useful when debugging a .env file
    print("Loaded Theme Service Settings:")
    for field_name, value in settings.model_dump().items():
        print(f"  {field_name}: {value}")
