"""
App Configuration.

This module defines the global application settings using Pydantic Settings.
It loads configuration variables from environment variables and/or a .env file,
ensuring typed and validated settings for the application.

Attributes:
    settings: The global instance of the Settings class, ready to be imported and used.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """
    Application Settings.

    This class defines the configuration for the application, validating
    environment variables against the specified types.

    Attributes:
        PROJECT_NAME: The name of the project (default: "Dealflow").
        DATABASE_URL: The connection string for the database.
        MAILGUN_API_KEY: API key for the Mailgun messages API. Sending is
            disabled (emails are only recorded) when unset.
        SCHEDULER_POLL_SECONDS: Upper bound on how long the delivery worker
            sleeps between scans for due occurrences.
        SCHEDULER_CLAIM_TIMEOUT_SECONDS: Age after which a claimed but
            unfinished occurrence is considered abandoned and reclaimed.
    """

    # Core
    PROJECT_NAME: str = "Dealflow"
    DATABASE_URL: str
    LOG_LEVEL: str = "INFO"

    # Outbound email (Mailgun)
    MAILGUN_API_KEY: Optional[str] = None
    MAILGUN_DOMAIN: Optional[str] = None
    MAILGUN_FROM_EMAIL: Optional[str] = None
    MAILGUN_FROM_NAME: str = "Clinic"
    MAILGUN_API_BASE_URL: str = "https://api.mailgun.net"

    # Delivery scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_POLL_SECONDS: float = 30.0
    SCHEDULER_BATCH_SIZE: int = 50
    SCHEDULER_CLAIM_TIMEOUT_SECONDS: int = 600

    model_config = SettingsConfigDict(
        env_file=".env", env_ignore_empty=True, extra="ignore"
    )


settings = Settings()
