import pytest

from preppertrack import db
from preppertrack.models import NotificationSettings
from preppertrack.notification_settings import (
    SettingsError,
    describe,
    flatten,
    load_settings_file,
    update_notification_settings,
)


def test_flatten_uses_dotted_email_keys():
    values = flatten(NotificationSettings())
    assert values["expirationDays"] == ["7", "30"]
    assert values["emailConfig.toEmail"] == ""
    assert "emailConfig" not in values


def test_update_sanitizes_and_stores(conn):
    settings = update_notification_settings(conn, {
        "quietStart": "<i>23:15</i>",
        "enableQuietHours": "yes",
        "emailConfig.toEmail": " me@example.com ",
        "emailConfig.fromName": "<script>x</script>Bunker",
    })
    assert settings.quiet_start == "23:15"
    assert settings.enable_quiet_hours is True
    assert settings.email_config.to_email == "me@example.com"
    assert settings.email_config.from_name == "Bunker"
    assert db.get_state(conn, db.NOTIFICATION_SETTINGS) == settings.to_dict()


def test_update_keeps_other_stored_values(conn):
    db.set_state(conn, db.NOTIFICATION_SETTINGS, {"soundAlerts": False, "expirationDays": [1]})
    settings = update_notification_settings(conn, {"quietEnd": "06:30"})
    assert settings.sound_alerts is False
    assert settings.expiration_days == {1}
    assert settings.quiet_end == "06:30"


def test_update_expiration_days_from_list(conn):
    settings = update_notification_settings(conn, {"expirationDays": [14, "2"]})
    assert settings.expiration_days == {2, 14}


@pytest.mark.parametrize("key, value", [
    ("expirationDays", "7,0"),
    ("expirationDays", "7.5"),
    ("expirationDays", [True]),
    ("soundAlerts", "maybe"),
    ("quietEnd", "7am"),
    ("emailProvider", "carrier-pigeon"),
    ("emailConfig.port", "70000"),
    ("emailConfig.fromEmail", "nobody"),
    ("colour", "red"),
])
def test_update_rejects_bad_values(conn, key, value):
    with pytest.raises(SettingsError) as excinfo:
        update_notification_settings(conn, {key: value})
    assert key in excinfo.value.errors
    assert db.get_state(conn, db.NOTIFICATION_SETTINGS) is None


def test_update_rejects_all_when_one_is_bad(conn):
    with pytest.raises(SettingsError) as excinfo:
        update_notification_settings(conn, {"quietStart": "21:00", "quietEnd": "late"})
    assert list(excinfo.value.errors) == ["quietEnd"]
    assert db.get_state(conn, db.NOTIFICATION_SETTINGS) is None


def test_email_can_be_cleared(conn):
    update_notification_settings(conn, {"emailConfig.toEmail": "me@example.com"})
    settings = update_notification_settings(conn, {"emailConfig.toEmail": ""})
    assert settings.email_config.to_email == ""


def test_load_settings_file_rejects_non_object(conn, tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("[1, 2]")
    with pytest.raises(SettingsError) as excinfo:
        load_settings_file(conn, str(path))
    assert excinfo.value.errors == {"file": "Settings file must contain a JSON object"}

    path.write_text("{not json")
    with pytest.raises(SettingsError):
        load_settings_file(conn, str(path))

    path.write_text('{"emailConfig": "smtp"}')
    with pytest.raises(SettingsError) as excinfo:
        load_settings_file(conn, str(path))
    assert excinfo.value.errors == {"emailConfig": "Must be an object"}


def test_describe_masks_secrets():
    settings = NotificationSettings()
    settings.email_config.api_key = "SG.secret"
    lines = describe(settings)
    assert "emailConfig.apiKey = ********" in lines
    assert "emailConfig.password = " in lines
    assert "expirationDays = 7,30" in lines
    assert "soundAlerts = true" in lines
