"""Application configuration management."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.debug and self.log_level.upper() not in ("TRACE", "VERBOSE"):
            self.log_level = "DEBUG"

    # Database
    database_url: str = "sqlite:///./wms_sync.db"

    # Security
    encryption_key: str
    webhook_secret: Optional[str] = None
    webhook_signature_header: str = "X-Webhook-Signature"

    # Application
    debug: bool = False
    log_level: str = "INFO"
    api_v1_str: str = "/api/v1"

    # External systems
    trackstar_base_url: str = "https://production.trackstarhq.com"
    trackstar_api_key: Optional[str] = None
    shiphero_base_url: str = "https://public-api.shiphero.com"

    # HTTP client behaviour
    http_timeout_seconds: float = 30.0
    http_max_attempts: int = 3
    http_backoff_base_seconds: float = 2.0
    http_max_backoff_seconds: float = 300.0
    page_size: int = 1000
    max_pages: int = 100
    circuit_failure_threshold: int = 5
    circuit_reset_seconds: float = 60.0

    # Sync
    default_credit_budget: int = 2000
    sync_interval_minutes: int = 5
    scheduler_enabled: bool = True
    incremental_overlap_minutes: int = 2
    max_error_details: int = 20


# Global settings instance
settings = Settings()
