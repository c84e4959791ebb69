"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
Per-tenant board credentials live in the board_settings table, not here.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    app_secret_key: str
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (webhook rate limiting, alert cooldowns)
    redis_url: str = "redis://localhost:6379/0"

    # Encryption of stored board credentials
    encryption_key: str = ""

    # Sentry
    sentry_dsn: str = ""

    # Dashboard auth
    dashboard_jwt_secret: str = ""
    allowed_origins: str = ""  # Comma-separated CORS origins

    # Board provider (Trello REST API)
    trello_api_base_url: str = "https://api.trello.com/1"
    trello_timeout_seconds: float = 10.0
    trello_max_retries: int = 3
    trello_retry_base_delay_seconds: float = 1.0
    trello_retry_max_wait_seconds: float = 30.0
    trello_webhook_secret: str = ""  # App secret used to sign webhook callbacks
    trello_webhook_path: str = "/api/v1/webhook/card-event"

    # Sync engine knobs
    sync_concurrency: int = 5
    quick_sync_deadline_ms: int = 8000
    quick_sync_window_minutes: int = 10
    quick_sync_max_cards: int = 50
    full_sync_deadline_ms: int = 280000

    # Webhook endpoint rate limit (requests per minute per IP)
    webhook_rate_limit_per_minute: int = 100

    # Alerting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical alerts

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def webhook_callback_url(self) -> str:
        """Public URL the provider should POST card events to."""
        return f"{self.app_base_url.rstrip('/')}{self.trello_webhook_path}"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
