# src/calbrew_sync/config.py
"""Configuration management using Pydantic Settings."""

import os
from pathlib import Path
from typing import Optional, List

import pytz
from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        secrets_dir=os.getenv("SECRETS_DIR", "/run/secrets")
    )

    # Google Calendar API Configuration
    google_client_id: Optional[str] = Field(None, description="Google OAuth Client ID")
    google_client_secret: Optional[str] = Field(None, description="Google OAuth Client Secret")
    google_scopes: List[str] = Field(
        default=["https://www.googleapis.com/auth/calendar"],
        description="Google API scopes"
    )

    # Managed calendar
    calendar_name: str = Field(
        default="Calbrew",
        description="Display name of the calendar that holds all occurrences"
    )
    calendar_description: str = Field(
        default="Hebrew calendar events managed by Calbrew",
        description="Description used when the managed calendar is created"
    )
    extended_property_key: str = Field(
        default="calbrew_event_id",
        description="Private extended property linking an occurrence to its event"
    )

    # Sync window
    past_window_years: int = Field(default=10, ge=0, description="Years kept behind the current year")
    future_window_years: int = Field(default=10, ge=0, description="Years materialized ahead")
    timezone: str = Field(default="UTC", description="Zone used to evaluate 'today'")

    # Retry policy for calendar API calls
    retry_max_attempts: int = Field(default=4, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=1.5, ge=0)
    retry_max_delay_seconds: float = Field(default=15.0, ge=0)

    # Application Configuration
    app_name: str = Field(default="calbrew-sync", description="Application name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string"
    )

    # Storage Configuration
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".calbrew-sync",
        description="Application data directory"
    )
    database_url: str = Field(
        default="",
        description="Database URL (defaults to SQLite in data_dir)"
    )

    @validator('data_dir', pre=True)
    def expand_path(cls, v):
        """Expand user paths and convert to Path objects."""
        if isinstance(v, str):
            return Path(v).expanduser().absolute()
        return v.expanduser().absolute()

    @validator('database_url')
    def set_default_database_url(cls, v, values):
        """Set default SQLite database URL if not provided."""
        if not v and 'data_dir' in values:
            data_dir = values['data_dir']
            return f"sqlite:///{data_dir}/calbrew.db"
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @validator('timezone')
    def validate_timezone(cls, v):
        """Reject zone names pytz does not know."""
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @validator('retry_max_delay_seconds')
    def max_delay_not_below_base(cls, v, values):
        base = values.get('retry_base_delay_seconds')
        if base is not None and v < base:
            raise ValueError("retry_max_delay_seconds must be >= retry_base_delay_seconds")
        return v

    def ensure_directories(self):
        """Create necessary directories with proper permissions."""
        self.data_dir.mkdir(parents=True, exist_ok=True, mode=0o700)  # Owner only

    @property
    def tzinfo(self):
        """pytz zone for evaluating the current Hebrew year."""
        return pytz.timezone(self.timezone)


def load_settings(config_file: Optional[str] = None) -> Settings:
    """Load application settings.

    Args:
        config_file: Optional path to an env file overriding ``.env``

    Returns:
        Settings instance
    """
    if config_file:
        settings = Settings(_env_file=config_file)
    else:
        settings = Settings()
    settings.ensure_directories()
    return settings


def create_example_config(path: Path) -> None:
    """Create an example configuration file.

    Args:
        path: Path to create the example config file
    """
    example_content = '''# Calbrew Sync Configuration
# Copy this file to .env and adjust as needed

# Google OAuth client (only needed for token refresh flows)
GOOGLE_CLIENT_ID=your_google_client_id_here
GOOGLE_CLIENT_SECRET=your_google_client_secret_here

# Managed calendar
CALENDAR_NAME=Calbrew
EXTENDED_PROPERTY_KEY=calbrew_event_id

# Sync window (Hebrew years around the current year)
PAST_WINDOW_YEARS=10
FUTURE_WINDOW_YEARS=10
TIMEZONE=UTC

# Retry policy for Google Calendar calls
RETRY_MAX_ATTEMPTS=4
RETRY_BASE_DELAY_SECONDS=1.5
RETRY_MAX_DELAY_SECONDS=15

# Application Configuration
DEBUG=false
LOG_LEVEL=INFO

# Storage Configuration (optional)
# DATA_DIR=~/.calbrew-sync
# DATABASE_URL=sqlite:///~/.calbrew-sync/calbrew.db
'''

    with open(path, 'w') as f:
        f.write(example_content)
