import smtplib

import httpx
import pytest
from twilio.base.exceptions import TwilioRestException

from preppertrack import email_notifier, twilio_notifier
from preppertrack.config import ProviderCredentials
from preppertrack.email_notifier import ProviderEmailSender, build_expiration_email, send_email
from preppertrack.models import EmailOptions, EmailSettings, NotificationSettings

MESSAGE = EmailOptions(to="me@example.com", subject="PrepperTrack Alert", text="Rice expires in 7 days")


def _settings(provider, **config):
    email_config = EmailSettings(to_email="me@example.com", from_email="alerts@example.com", **config)
    return NotificationSettings(email_notifications=True, email_provider=provider, email_config=email_config)


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://example.invalid")
            raise httpx.HTTPStatusError(
                f"HTTP {self.status_code}",
                request=request,
                response=httpx.Response(self.status_code, request=request),
            )


class _Calls(list):
    pass


@pytest.fixture
def http_calls(monkeypatch):
    calls = _Calls()
    calls.status_code = 200

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return FakeResponse(calls.status_code)

    monkeypatch.setattr(email_notifier.httpx, "post", fake_post)
    return calls


def test_build_expiration_email():
    options = build_expiration_email("Rice", 7, "2026-10-24", "me@example.com")
    assert options.to == "me@example.com"
    assert options.subject == "PrepperTrack Alert: Rice expires in 7 days"
    assert options.text == (
        'Your item "Rice" will expire in 7 days (on 2026-10-24). '
        "Please check your inventory and use or replace this item soon."
    )


def test_disabled_or_unconfigured():
    settings = _settings("sendgrid", api_key="key")
    settings.email_notifications = False
    assert send_email(MESSAGE, settings).message == "Email notifications are disabled or not configured"

    assert send_email(MESSAGE, _settings("none")).message == "Email notifications are disabled or not configured"


def test_missing_recipient():
    settings = _settings("sendgrid", api_key="key")
    settings.email_config.to_email = ""
    result = send_email(MESSAGE, settings)
    assert not result.success
    assert result.message == "Recipient email address is not configured"


def test_unknown_provider():
    assert send_email(MESSAGE, _settings("carrier-pigeon")).message == "Unknown email provider"


def test_sendgrid(http_calls):
    result = send_email(MESSAGE, _settings("sendgrid", api_key="sg-key", from_name="Prepper"))
    assert result.success

    url, kwargs = http_calls[0]
    assert url == email_notifier.SENDGRID_URL
    assert kwargs["headers"]["Authorization"] == "Bearer sg-key"
    assert kwargs["json"]["personalizations"][0]["to"][0]["email"] == "me@example.com"
    assert kwargs["json"]["from"] == {"email": "alerts@example.com", "name": "Prepper"}


def test_sendgrid_uses_environment_key(http_calls):
    credentials = ProviderCredentials(sendgrid_api_key="env-key")
    assert send_email(MESSAGE, _settings("sendgrid"), credentials).success
    assert http_calls[0][1]["headers"]["Authorization"] == "Bearer env-key"


def test_sendgrid_incomplete(http_calls):
    result = send_email(MESSAGE, _settings("sendgrid"))
    assert not result.success
    assert result.message == "SendGrid configuration is incomplete"
    assert http_calls == []


def test_http_error_is_reported(http_calls):
    http_calls.status_code = 401
    result = send_email(MESSAGE, _settings("sendgrid", api_key="bad"))
    assert not result.success
    assert "401" in result.message


def test_mailgun(http_calls):
    assert send_email(MESSAGE, _settings("mailgun", api_key="mg-key", domain="mg.example.com")).success
    url, kwargs = http_calls[0]
    assert url == "https://api.mailgun.net/v3/mg.example.com/messages"
    assert kwargs["auth"] == ("api", "mg-key")
    assert kwargs["data"]["from"] == "PrepperTrack <alerts@example.com>"


def test_pushbullet(http_calls):
    assert send_email(MESSAGE, _settings("pushbullet", access_token="pb-token")).success
    url, kwargs = http_calls[0]
    assert url == email_notifier.PUSHBULLET_URL
    assert kwargs["headers"] == {"Access-Token": "pb-token"}
    assert kwargs["json"]["type"] == "note"


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        self.quit_called = False
        FakeSMTP.instances.append(self)

    def starttls(self):
        if FakeSMTP.fail_starttls:
            raise smtplib.SMTPNotSupportedError("STARTTLS extension not supported by server.")
        self.started_tls = True

    def login(self, username, password):
        if FakeSMTP.fail_login:
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")
        self.logged_in = (username, password)

    def send_message(self, msg):
        self.sent.append(msg)

    def quit(self):
        self.quit_called = True


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_login = False
    FakeSMTP.fail_starttls = False
    monkeypatch.setattr(email_notifier.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(email_notifier.smtplib, "SMTP_SSL", FakeSMTP)
    return FakeSMTP


def test_smtp_starttls(fake_smtp):
    settings = _settings("smtp", host="smtp.example.com", port="587", username="user", password="secret")
    assert send_email(MESSAGE, settings).success

    server = fake_smtp.instances[0]
    assert (server.host, server.port) == ("smtp.example.com", 587)
    assert server.started_tls
    assert server.logged_in == ("user", "secret")
    assert server.sent[0]["To"] == "me@example.com"
    assert server.sent[0]["Subject"] == "PrepperTrack Alert"
    assert server.quit_called


def test_smtp_ssl_port(fake_smtp):
    settings = _settings("smtp", host="smtp.example.com", port="465", username="user", password="secret")
    assert send_email(MESSAGE, settings).success
    assert not fake_smtp.instances[0].started_tls


def test_smtp_falls_back_to_environment(fake_smtp):
    credentials = ProviderCredentials(smtp_host="env.example.com", smtp_port=2525, smtp_username="env", smtp_password="pw")
    assert send_email(MESSAGE, _settings("smtp"), credentials).success
    server = fake_smtp.instances[0]
    assert (server.host, server.port) == ("env.example.com", 2525)
    assert server.logged_in == ("env", "pw")


def test_smtp_auth_failure(fake_smtp):
    fake_smtp.fail_login = True
    settings = _settings("smtp", host="smtp.example.com", username="user", password="wrong")
    result = send_email(MESSAGE, settings)
    assert not result.success
    assert fake_smtp.instances[0].quit_called


def test_smtp_closes_connection_when_starttls_fails(fake_smtp):
    fake_smtp.fail_starttls = True
    settings = _settings("smtp", host="smtp.example.com", port="587", username="user", password="secret")
    result = send_email(MESSAGE, settings)
    assert not result.success
    server = fake_smtp.instances[0]
    assert server.logged_in is None
    assert server.quit_called


def test_smtp_incomplete_and_bad_port(fake_smtp):
    assert send_email(MESSAGE, _settings("smtp")).message == "SMTP configuration is incomplete"
    bad_port = _settings("smtp", host="h", port="abc", username="u", password="p")
    assert send_email(MESSAGE, bad_port).message == "Invalid SMTP port: abc"
    assert fake_smtp.instances == []


class FakeTwilioClient:
    created = []
    error = None

    def __init__(self, account_sid, auth_token):
        self.account_sid = account_sid
        self.messages = self

    def create(self, body, from_, to):
        if FakeTwilioClient.error is not None:
            raise FakeTwilioClient.error
        FakeTwilioClient.created.append({"body": body, "from_": from_, "to": to})

        class Message:
            sid = "SM123"

        return Message()


@pytest.fixture
def fake_twilio(monkeypatch):
    FakeTwilioClient.created = []
    FakeTwilioClient.error = None
    monkeypatch.setattr(twilio_notifier, "Client", FakeTwilioClient)
    return FakeTwilioClient


def test_twilio_sms(fake_twilio):
    settings = _settings("twilio", account_sid="AC1", auth_token="tok", from_phone="+15550001", to_phone="+15550002")
    long_message = EmailOptions(to="me@example.com", subject="Alert", text="x" * 500)
    assert send_email(long_message, settings).success

    sms = fake_twilio.created[0]
    assert sms["from_"] == "+15550001"
    assert sms["to"] == "+15550002"
    assert len(sms["body"]) == twilio_notifier.SMS_MAX_LENGTH
    assert sms["body"].startswith("Alert: ")


def test_twilio_incomplete(fake_twilio):
    result = send_email(MESSAGE, _settings("twilio", account_sid="AC1"))
    assert result.message == "Twilio configuration is incomplete"
    assert fake_twilio.created == []


def test_twilio_rest_error(fake_twilio):
    fake_twilio.error = TwilioRestException(401, "https://api.twilio.com", msg="Authenticate", code=20003)
    settings = _settings("twilio", account_sid="AC1", auth_token="tok", from_phone="+1", to_phone="+2")
    assert not send_email(MESSAGE, settings).success


def test_provider_email_sender_passes_credentials(http_calls):
    sender = ProviderEmailSender(ProviderCredentials(sendgrid_api_key="env-key"))
    assert sender.send(MESSAGE, _settings("sendgrid")).success
    assert http_calls[0][1]["headers"]["Authorization"] == "Bearer env-key"
