"""Configuration using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with validation and constants."""

    host: str = "0.0.0.0"  # nosec B104 - Required for container deployment
    port: int = 8000
    log_level: str = "INFO"
    log_file: str | None = None
    debug: bool = False

    # Oracle service. The URL may carry a token as "URL|TOKEN".
    oracle_url: str | None = None
    oracle_api_key: str | None = None
    oracle_auth_header: str = "Authorization"
    # None: prefix "Bearer " only when the header is Authorization
    oracle_auth_bearer: bool | None = None
    oracle_default_flow: str = "tarot"
    oracle_max_input_length: int = Field(default=1024, gt=16)

    # Admission control
    general_rate_limit: int = Field(default=30, gt=0)
    general_rate_window: int = Field(default=60, gt=0)
    oracle_rate_limit: int = Field(default=10, gt=0)
    oracle_rate_window: int = Field(default=60, gt=0)

    # Dispatcher
    queue_concurrency: int = Field(default=3, gt=0)
    queue_timeout_seconds: float = Field(default=60.0, gt=0)

    # Cache settings
    cache_max_size: int = Field(default=500, gt=0)
    cache_ttl_seconds: float = Field(default=3600.0, gt=0)

    metrics_log_interval_seconds: float = Field(default=60.0, ge=0)

    cors_origins: list[str] = ["*"]

    @property
    def oracle_configured(self) -> bool:
        """Check whether an oracle run URL is set."""
        return bool(self.oracle_url and self.oracle_url.strip())

    class Config:
        """Pydantic config."""

        env_prefix = "TAROT_"
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    """Get settings instance (for dependency injection)."""
    return settings
