"""Sender configuration using Pydantic Settings"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional
import os

from barkpush.services.push.constants import (
    BARK_TOPIC,
    DEFAULT_CONCURRENCY,
    DEFAULT_TIMEOUT_SECONDS,
    JWT_TOKEN_LIFETIME_SECONDS,
    TOKEN_STALE_AFTER_SECONDS,
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file"""

    # APNS credentials
    APNS_KEY_FILE: Optional[str] = None  # Path to .p8 auth key file
    APNS_KEY_ID: Optional[str] = None  # 10-character key identifier
    APNS_TEAM_ID: Optional[str] = None  # 10-character team identifier
    APNS_TOPIC: str = BARK_TOPIC  # Bundle ID of the receiving app
    APNS_USE_SANDBOX: bool = False  # Use sandbox for development

    # Provider token cache
    APNS_TOKEN_STALE_SECONDS: int = TOKEN_STALE_AFTER_SECONDS

    # Transport
    APNS_TIMEOUT_SECONDS: float = DEFAULT_TIMEOUT_SECONDS
    DISPATCH_CONCURRENCY: int = DEFAULT_CONCURRENCY

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    @field_validator('APNS_TOKEN_STALE_SECONDS', mode='after')
    @classmethod
    def validate_token_stale_seconds(cls, v: int) -> int:
        """Tokens must be regenerated before APNs stops accepting them."""
        if not 0 < v < JWT_TOKEN_LIFETIME_SECONDS:
            raise ValueError(
                f"APNS_TOKEN_STALE_SECONDS must be between 1 and {JWT_TOKEN_LIFETIME_SECONDS - 1}"
            )
        return v

    @field_validator('DISPATCH_CONCURRENCY', mode='after')
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("DISPATCH_CONCURRENCY must be at least 1")
        return v

    @field_validator('LOG_LEVEL', mode='after')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @property
    def apns_ready(self) -> bool:
        """Check if APNS is properly configured and ready to use."""
        return (
            self.APNS_KEY_FILE is not None
            and self.APNS_KEY_ID is not None
            and self.APNS_TEAM_ID is not None
            and os.path.exists(self.APNS_KEY_FILE)
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
