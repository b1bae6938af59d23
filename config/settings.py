"""
Configuration Management

Loads environment variables and provides settings for the rule migration.
Uses python-dotenv for local development and environment variables for production.
"""

import os
from dotenv import load_dotenv

# Load .env file for local development
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a valid integer, got: {value}")


class Settings:
    """
    Application settings loaded from environment variables.

    Ensures no hardcoded credentials in code.
    """

    REQUIRED_FIELDS = ("DB_USER", "DB_PASSWORD")

    def __init__(self):
        """Read the environment and validate required settings."""
        # Database Configuration
        self.DB_HOST: str = os.getenv("DB_HOST", "localhost")
        self.DB_PORT: int = _env_int("DB_PORT", 5432)
        self.DB_NAME: str = os.getenv("DB_NAME", "rules_db")
        self.DB_USER: str = os.getenv("DB_USER")
        self.DB_PASSWORD: str = os.getenv("DB_PASSWORD")
        self.DB_POOL_MIN: int = _env_int("DB_POOL_MIN", 1)
        self.DB_POOL_MAX: int = _env_int("DB_POOL_MAX", 5)
        self.DB_CONNECT_TIMEOUT: int = _env_int("DB_CONNECT_TIMEOUT", 10)

        # Google Sheets Configuration
        self.GOOGLE_CREDENTIALS_PATH: str = os.getenv("GOOGLE_CREDENTIALS_PATH", "credentials.json")
        self.DOWNLOAD_TIMEOUT: int = _env_int("DOWNLOAD_TIMEOUT", 30)

        # Migration Configuration
        self.BATCH_SIZE: int = _env_int("BATCH_SIZE", 1000)
        self.STREAMING_BATCH_SIZE: int = _env_int("STREAMING_BATCH_SIZE", 10)
        self.LARGE_DATASET_THRESHOLD: int = _env_int("LARGE_DATASET_THRESHOLD", 100_000)

        # Logging Configuration
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FILE: str = os.getenv("LOG_FILE", "logs/migration.log")

        self._validate_settings()

    def _validate_settings(self) -> None:
        """
        Validate that all required settings are provided.

        Raises:
            ValueError: If required settings are missing or out of range
        """
        missing_fields = [
            field for field in self.REQUIRED_FIELDS
            if not getattr(self, field, None)
        ]

        if missing_fields:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing_fields)}. "
                f"Please check your .env file."
            )

        if self.BATCH_SIZE < 1 or self.STREAMING_BATCH_SIZE < 1:
            raise ValueError("BATCH_SIZE and STREAMING_BATCH_SIZE must be positive")

        if self.DB_POOL_MIN > self.DB_POOL_MAX:
            raise ValueError("DB_POOL_MIN cannot be greater than DB_POOL_MAX")

    def __repr__(self) -> str:
        """Return string representation (excluding sensitive data)."""
        return (
            f"Settings("
            f"DB_HOST={self.DB_HOST}, "
            f"DB_NAME={self.DB_NAME}, "
            f"BATCH_SIZE={self.BATCH_SIZE}, "
            f"LARGE_DATASET_THRESHOLD={self.LARGE_DATASET_THRESHOLD}"
            f")"
        )
