"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Devflow Workflow Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Server Settings
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    # Execution defaults
    DEFAULT_CONCURRENCY: str = "skip"  # skip, queue, parallel
    DEFAULT_RETRY_DELAY: str = "5s"
    SHELL_TIMEOUT: str = "60s"
    SHELL_MAX_OUTPUT: int = 4 * 1024 * 1024
    HTTP_TIMEOUT: str = "30s"
    AGENT_MAX_TURNS: int = 30
    DB_DEFAULT_LIMIT: int = 100

    # Run bookkeeping
    MAX_RESULT_CACHE_ENTRIES: int = 200
    MAX_RUNS_PER_WORKFLOW: int = 50
    MAX_RUNS_TOTAL: int = 500

    # Inbound hook events
    # Empty token disables the /hooks endpoint entirely
    HOOK_TOKEN: str = ""
    HOOK_MAX_BODY_BYTES: int = 16 * 1024

    # Notifications
    NOTIFY_WEBHOOK_TIMEOUT: int = 10

    # CORS Settings
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:8080"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse ALLOWED_ORIGINS string into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
