"""
Event Service configuration
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

EVENT_SERVICE_DIR = Path(__file__).parent.parent.parent
ENV_FILE = EVENT_SERVICE_DIR / ".env"


class EventSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Event Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    ENABLE_FILE_LOGGING: bool = False

    # Service specific
    SERVICE_NAME: str = "event-service"

    # Redis pub/sub broker
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_DISABLED: bool = False

    # Subscriber reconnection
    SUBSCRIBER_MAX_RECONNECT_ATTEMPTS: int = 5
    SUBSCRIBER_RECONNECT_DELAY: float = 1.0
    SUBSCRIBER_POLL_TIMEOUT: float = 1.0

    # Handler retry base delay, doubled on every attempt
    HANDLER_RETRY_DELAY: float = 1.0


_settings_instance = None


def get_settings() -> EventSettings:
    """Get settings singleton instance"""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = EventSettings()
    return _settings_instance
