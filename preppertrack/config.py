"""Configuration management."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class SchedulerConfig:
    """Expiration scan scheduling."""
    scan_interval_minutes: int = 60


@dataclass
class ImportConfig:
    """Staged import behaviour."""
    confirm_timeout_seconds: int = 300  # staged payloads older than this are discarded


@dataclass
class ProviderCredentials:
    """
    Environment-level provider credentials.

    Used when the user's notification settings leave a credential blank.
    """
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    sendgrid_api_key: Optional[str] = None
    mailgun_api_key: Optional[str] = None
    mailgun_domain: Optional[str] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None
    twilio_to_number: Optional[str] = None
    pushbullet_access_token: Optional[str] = None


@dataclass
class AppConfig:
    """Complete application configuration."""
    db_path: str
    log_level: str
    export_dir: str
    scheduler: SchedulerConfig
    imports: ImportConfig
    credentials: ProviderCredentials


def _int_env(key: str, default: int) -> int:
    """Parse an integer environment variable."""
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ValueError(f"Environment variable {key} must be an integer, got {raw!r}")


def load_config() -> AppConfig:
    """
    Load configuration from environment variables.

    Raises:
        ValueError: If a numeric value is malformed or out of range.
    """
    db_path = os.getenv("DB_PATH", "preppertrack.db")
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    export_dir = os.getenv("EXPORT_DIR", ".")

    scan_interval_minutes = _int_env("SCAN_INTERVAL_MINUTES", 60)
    if scan_interval_minutes <= 0:
        raise ValueError("SCAN_INTERVAL_MINUTES must be positive")

    confirm_timeout_seconds = _int_env("IMPORT_CONFIRM_TIMEOUT_SECONDS", 300)
    if confirm_timeout_seconds <= 0:
        raise ValueError("IMPORT_CONFIRM_TIMEOUT_SECONDS must be positive")

    # Password may be an app password with spaces (Gmail, Yahoo)
    smtp_password = os.getenv("SMTP_PASSWORD")
    if smtp_password:
        smtp_password = smtp_password.replace(" ", "")

    return AppConfig(
        db_path=db_path,
        log_level=log_level,
        export_dir=export_dir,
        scheduler=SchedulerConfig(
            scan_interval_minutes=scan_interval_minutes,
        ),
        imports=ImportConfig(
            confirm_timeout_seconds=confirm_timeout_seconds,
        ),
        credentials=ProviderCredentials(
            smtp_host=os.getenv("SMTP_HOST"),
            smtp_port=_int_env("SMTP_PORT", 587),
            smtp_username=os.getenv("SMTP_USERNAME"),
            smtp_password=smtp_password,
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY"),
            mailgun_api_key=os.getenv("MAILGUN_API_KEY"),
            mailgun_domain=os.getenv("MAILGUN_DOMAIN"),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
            twilio_from_number=os.getenv("TWILIO_FROM_NUMBER"),
            twilio_to_number=os.getenv("TWILIO_TO_NUMBER"),
            pushbullet_access_token=os.getenv("PUSHBULLET_ACCESS_TOKEN"),
        ),
    )
