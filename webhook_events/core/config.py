"""
Application configuration settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Project settings
    PROJECT_NAME: str = "Webhook Event System"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Development settings
    DEBUG: bool = False

    # Subscription defaults
    WEBHOOK_DEFAULT_TIMEOUT_SECONDS: float = 10.0
    WEBHOOK_DEFAULT_RETRY_ATTEMPTS: int = 3
    WEBHOOK_DEFAULT_RETRY_DELAY_MS: int = 1000
    WEBHOOK_SIGNATURE_HEADER: str = "X-Webhook-Signature"
    WEBHOOK_CONTENT_TYPE: str = "application/json"
    WEBHOOK_USER_AGENT: str = "Wesley-Ambacht-Webhooks/1.0"

    # Retry engine
    WEBHOOK_MAX_RETRY_DELAY_MS: int = 300_000  # 5 minutes
    WEBHOOK_DEAD_LETTER_THRESHOLD: int = 5
    WEBHOOK_DISPATCH_INTERVAL_SECONDS: float = 5.0
    WEBHOOK_RESPONSE_BODY_LIMIT: int = 1000

    # Event history
    WEBHOOK_EVENT_HISTORY_LIMIT: int = 10_000

    # Health monitoring
    WEBHOOK_HEALTH_CHECK_INTERVAL_SECONDS: float = 300.0
    WEBHOOK_SUCCESS_RATE_THRESHOLD: float = 90.0
    WEBHOOK_SUCCESS_RATE_MIN_DELIVERIES: int = 10
    WEBHOOK_RETRY_QUEUE_ALERT_SIZE: int = 100
    WEBHOOK_DELIVERY_RETENTION_DAYS: int = 30

    # Metrics
    METRICS_MAX_SAMPLES: int = 1000


# Create global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
