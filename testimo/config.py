"""Environment configuration for the testimonial reminder engine."""

import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self) -> None:
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "")
        self.FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")
        # Base URL used to build the public testimonial submission link
        self.APP_BASE_URL: str = os.getenv("APP_BASE_URL", "http://localhost:5000")

        # Email provider (Resend HTTP API)
        self.RESEND_API_KEY: str = os.getenv("RESEND_API_KEY", "")
        self.RESEND_API_URL: str = os.getenv("RESEND_API_URL", "https://api.resend.com")
        self.EMAIL_FROM: str = os.getenv("EMAIL_FROM", "noreply@testimo.app")
        self.EMAIL_FROM_NAME: str = os.getenv("EMAIL_FROM_NAME", "Testimo")

        # SMS provider (Twilio REST API)
        self.TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
        self.TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
        self.TWILIO_PHONE_NUMBER: str = os.getenv("TWILIO_PHONE_NUMBER", "")
        self.TWILIO_API_URL: str = os.getenv("TWILIO_API_URL", "https://api.twilio.com")

        # Reminder scheduler
        self.REMINDER_POLL_INTERVAL_SECONDS: int = int(
            os.getenv("REMINDER_POLL_INTERVAL_SECONDS", "60")
        )
        self.REMINDER_BATCH_SIZE: int = int(os.getenv("REMINDER_BATCH_SIZE", "100"))
        self.REMINDER_SEND_TIMEOUT_SECONDS: float = float(
            os.getenv("REMINDER_SEND_TIMEOUT_SECONDS", "10")
        )
        self.REMINDER_SCHEDULER_ENABLED: bool = _env_bool("REMINDER_SCHEDULER_ENABLED")

    def validate(self) -> None:
        """Validate that required environment variables are set."""
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable is required")
        if self.REMINDER_POLL_INTERVAL_SECONDS <= 0:
            raise ValueError("REMINDER_POLL_INTERVAL_SECONDS must be positive")
        if self.REMINDER_SEND_TIMEOUT_SECONDS <= 0:
            raise ValueError("REMINDER_SEND_TIMEOUT_SECONDS must be positive")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    return settings
