"""
kvwire Configuration Settings

This module contains all configuration constants for the kvwire server.
Values can be overridden through KVWIRE_* environment variables.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Server configuration settings."""

    # Network settings
    HOST: str = os.environ.get("KVWIRE_HOST", "0.0.0.0")
    PORT: int = int(os.environ.get("KVWIRE_PORT", "6380"))

    # Expiration settings
    REAPER_INTERVAL: float = float(os.environ.get("KVWIRE_REAPER_INTERVAL", "1.0"))

    # Connection settings
    READ_BUFFER_SIZE: int = 64 * 1024  # Longest accepted inline/header line
    MAX_BULK_LENGTH: int = int(os.environ.get("KVWIRE_MAX_BULK_LENGTH", str(512 * 1024 * 1024)))

    # Logging settings
    DEBUG: bool = os.environ.get("KVWIRE_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("KVWIRE_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
