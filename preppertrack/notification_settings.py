"""Editing stored notification settings through a sanitized form."""

import json
import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Mapping

from . import db
from .models import NotificationSettings, SanitizationType
from .sanitization import sanitize_json_data, sanitize_text
from .sanitized_input import SanitizedForm

logger = logging.getLogger(__name__)

EMAIL_PREFIX = "emailConfig."
EMAIL_PROVIDERS = ("none", "sendgrid", "mailgun", "twilio", "pushbullet", "smtp")

BOOLEAN_KEYS = (
    "enableNotifications",
    "expirationAlerts",
    "pushNotifications",
    "soundAlerts",
    "enableQuietHours",
    "emailNotifications",
    "emailExpirationAlerts",
)
EMAIL_KEYS = (f"{EMAIL_PREFIX}fromEmail", f"{EMAIL_PREFIX}toEmail")
SECRET_KEYS = (
    f"{EMAIL_PREFIX}apiKey",
    f"{EMAIL_PREFIX}authToken",
    f"{EMAIL_PREFIX}accessToken",
    f"{EMAIL_PREFIX}password",
)

_TRUE_WORDS = ("true", "yes", "on", "1")
_FALSE_WORDS = ("false", "no", "off", "0")
_TIME_RE = re.compile(r"([01][0-9]|2[0-3]):[0-5][0-9]")
_DIGITS_RE = re.compile(r"[0-9]+")


class SettingsError(ValueError):
    """Raised when a settings update is rejected; ``errors`` maps key to message."""

    def __init__(self, errors: Mapping[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{key}: {error}" for key, error in sorted(self.errors.items())))


def flatten(settings: NotificationSettings) -> Dict[str, Any]:
    """Settings as a flat dict; provider fields become ``emailConfig.<field>``."""
    data = settings.to_dict()
    email_config = data.pop("emailConfig")
    data["expirationDays"] = [str(days) for days in data["expirationDays"]]
    for key, value in email_config.items():
        data[f"{EMAIL_PREFIX}{key}"] = value
    return data


def _unflatten(values: Mapping[str, Any]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    email_config: Dict[str, Any] = {}
    for key, value in values.items():
        if key.startswith(EMAIL_PREFIX):
            email_config[key[len(EMAIL_PREFIX):]] = value
        else:
            data[key] = value
    data["emailConfig"] = email_config
    data["expirationDays"] = [int(days) for days in data.get("expirationDays", [])]
    return data


def _check_boolean(value: Any):
    return None if isinstance(value, bool) else "Must be true or false"


def _check_days(value: Any):
    if all(_DIGITS_RE.fullmatch(days) and int(days) > 0 for days in value):
        return None
    return "Must be a comma-separated list of positive whole days"


def _check_time(value: Any):
    return None if _TIME_RE.fullmatch(value) else "Must be a 24-hour time like 22:00"


def _check_provider(value: Any):
    if value in EMAIL_PROVIDERS:
        return None
    return f"Must be one of: {', '.join(EMAIL_PROVIDERS)}"


def _check_port(value: Any):
    if not value or (_DIGITS_RE.fullmatch(value) and 0 < int(value) < 65536):
        return None
    return "Must be a port number between 1 and 65535"


def _build_form(settings: NotificationSettings) -> SanitizedForm:
    values = flatten(settings)
    sanitizers = {}
    for key in values:
        if key in BOOLEAN_KEYS:
            continue
        if key == "expirationDays":
            sanitizers[key] = SanitizationType.ARRAY
        elif key in EMAIL_KEYS:
            sanitizers[key] = SanitizationType.EMAIL
        else:
            sanitizers[key] = SanitizationType.TEXT

    validators = {key: _check_boolean for key in BOOLEAN_KEYS}
    validators.update({
        "expirationDays": _check_days,
        "quietStart": _check_time,
        "quietEnd": _check_time,
        "emailProvider": _check_provider,
        f"{EMAIL_PREFIX}port": _check_port,
    })
    return SanitizedForm(values, sanitizers, validators)


def _coerce(key: str, value: Any) -> Any:
    """Turn a command-line string or a JSON value into the form's raw input."""
    if key in BOOLEAN_KEYS:
        if isinstance(value, str):
            word = value.strip().lower()
            if word in _TRUE_WORDS:
                return True
            if word in _FALSE_WORDS:
                return False
        return value
    if key == "expirationDays":
        if isinstance(value, str):
            return [part.strip() for part in value.split(",")]
        if isinstance(value, (list, tuple)):
            return [part if isinstance(part, str) else str(part) for part in value]
        return [str(value)]
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def update_notification_settings(conn: sqlite3.Connection, updates: Mapping[str, Any]) -> NotificationSettings:
    """
    Apply updates to the stored notification settings.

    Every value goes through the form's sanitizer and validator. Nothing is
    written unless all updates are valid.

    Args:
        conn: Database connection.
        updates: Flat setting keys (see ``flatten``) mapped to raw values.

    Returns:
        The settings now stored.

    Raises:
        SettingsError: If any key is unknown or any value is invalid.
    """
    current = NotificationSettings.from_dict(db.get_state(conn, db.NOTIFICATION_SETTINGS, {}))
    form = _build_form(current)

    errors: Dict[str, str] = {}
    for key, raw in updates.items():
        if key not in form.values:
            errors[key] = "Unknown setting"
            continue
        value = _coerce(key, raw)
        sanitized = form.update_field(key, value)
        if key in EMAIL_KEYS and not sanitized and sanitize_text(value):
            errors[key] = "Invalid email address"

    form.validate_form()
    for key, error in form.errors.items():
        if key in updates:
            errors.setdefault(key, error)
    if errors:
        logger.warning(f"Rejected notification settings update: {', '.join(sorted(errors))}")
        raise SettingsError(errors)

    settings = NotificationSettings.from_dict(_unflatten(form.get_sanitized_values()))
    db.set_state(conn, db.NOTIFICATION_SETTINGS, settings.to_dict())
    logger.info(f"Updated notification settings: {', '.join(sorted(updates))}")
    return settings


def load_settings_file(conn: sqlite3.Connection, path: str) -> NotificationSettings:
    """Apply a JSON object of camelCase settings (nested ``emailConfig`` allowed)."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise SettingsError({"file": f"Invalid JSON: {e}"}) from e
    if not isinstance(data, dict):
        raise SettingsError({"file": "Settings file must contain a JSON object"})

    data = sanitize_json_data(data)
    email_config = data.pop("emailConfig", {})
    if not isinstance(email_config, dict):
        raise SettingsError({"emailConfig": "Must be an object"})
    updates = dict(data)
    for key, value in email_config.items():
        updates[f"{EMAIL_PREFIX}{key}"] = value
    return update_notification_settings(conn, updates)


def describe(settings: NotificationSettings) -> List[str]:
    """One ``key = value`` line per setting, with secrets masked."""
    lines = []
    for key, value in flatten(settings).items():
        if key == "expirationDays":
            value = ",".join(value)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        elif key in SECRET_KEYS and value:
            value = "********"
        lines.append(f"{key} = {value}")
    return lines
