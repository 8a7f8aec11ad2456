import pytest

from preppertrack.config import load_config

ENV_KEYS = [
    "DB_PATH", "LOG_LEVEL", "EXPORT_DIR", "SCAN_INTERVAL_MINUTES", "IMPORT_CONFIRM_TIMEOUT_SECONDS",
    "SMTP_HOST", "SMTP_PORT", "SMTP_USERNAME", "SMTP_PASSWORD", "SENDGRID_API_KEY",
    "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    config = load_config()
    assert config.db_path == "preppertrack.db"
    assert config.log_level == "INFO"
    assert config.export_dir == "."
    assert config.scheduler.scan_interval_minutes == 60
    assert config.imports.confirm_timeout_seconds == 300
    assert config.credentials.smtp_port == 587
    assert config.credentials.sendgrid_api_key is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DB_PATH", "/tmp/prep.db")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("SCAN_INTERVAL_MINUTES", "15")
    monkeypatch.setenv("IMPORT_CONFIRM_TIMEOUT_SECONDS", "45")
    monkeypatch.setenv("SMTP_PORT", "465")
    monkeypatch.setenv("SMTP_PASSWORD", "abcd efgh ijkl mnop")
    monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC123")

    config = load_config()
    assert config.db_path == "/tmp/prep.db"
    assert config.log_level == "DEBUG"
    assert config.scheduler.scan_interval_minutes == 15
    assert config.imports.confirm_timeout_seconds == 45
    assert config.credentials.smtp_port == 465
    assert config.credentials.smtp_password == "abcdefghijklmnop"
    assert config.credentials.twilio_account_sid == "AC123"


@pytest.mark.parametrize("key, value", [
    ("SCAN_INTERVAL_MINUTES", "hourly"),
    ("SCAN_INTERVAL_MINUTES", "0"),
    ("IMPORT_CONFIRM_TIMEOUT_SECONDS", "-5"),
    ("SMTP_PORT", "smtp"),
])
def test_invalid_values(monkeypatch, key, value):
    monkeypatch.setenv(key, value)
    with pytest.raises(ValueError, match=key):
        load_config()
