"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./storybridge.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Public address of this site, used to build media URLs in exported issue text.
    site_address: str = "http://localhost:8000"
    # Language used for generated text (issue attribution lines and such).
    default_language: str = "en"

    # Media service endpoint that copies an external avatar into local storage.
    # If unset, imported users simply get no profile image.
    media_import_url: str | None = None
    media_import_timeout_seconds: float = 10.0

    # Import
    event_poll_interval_minutes: int = 10
    # When false, the scheduler only runs one-shot tasks (no periodic repo polling).
    event_polling_enabled: bool = True

    # Transport
    transport_max_attempts: int = 3
    transport_retry_delay_seconds: float = 0.5

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
