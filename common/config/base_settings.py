"""
Environment-driven settings shared by the engine's entry points.

Values come from environment variables (or a local .env file) through
pydantic-settings. Subclass BaseAppSettings for engine-specific knobs.

Example:
    class Settings(BaseAppSettings):
        STREAK_TIMEZONE: str = "UTC"

    settings = Settings()
    settings.validate_required()
"""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseAppSettings(BaseSettings):
    """Connection, server and logging settings."""

    # ==========================================================================
    # MongoDB
    # ==========================================================================
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "kidslearning"
    MONGODB_SERVER_SELECTION_TIMEOUT_MS: int = 5000
    MONGODB_APP_NAME: str = "progress-engine"

    # ==========================================================================
    # HTTP server
    # ==========================================================================
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    ENVIRONMENT: str = "development"  # development | staging | production

    # Comma-separated list, or "*"
    CORS_ORIGINS: str = "*"
    CORS_ALLOW_CREDENTIALS: bool = True

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )

    def get_cors_origins(self) -> List[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    def collect_errors(self) -> List[str]:
        """Problems with the base settings, empty when they are usable."""
        errors = []
        if not self.MONGODB_URI:
            errors.append("MONGODB_URI is required")
        if not self.MONGODB_DATABASE:
            errors.append("MONGODB_DATABASE is required")
        if self.MONGODB_SERVER_SELECTION_TIMEOUT_MS <= 0:
            errors.append("MONGODB_SERVER_SELECTION_TIMEOUT_MS must be positive")
        return errors

    def validate_required(self) -> None:
        """
        Raises:
            ValueError: Listing every configuration problem found
        """
        errors = self.collect_errors()
        if errors:
            raise ValueError("Configuration errors:\n- " + "\n- ".join(errors))
