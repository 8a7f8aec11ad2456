"""Email delivery through the user's configured provider."""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Dict, Optional

import httpx

from .capabilities import EmailSender
from .config import ProviderCredentials
from .models import EmailOptions, EmailResult, EmailSettings, NotificationSettings
from .twilio_notifier import send_sms

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 30.0
SMTP_TIMEOUT_SECONDS = 30
DEFAULT_FROM_NAME = "PrepperTrack"

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
MAILGUN_URL = "https://api.mailgun.net/v3/{domain}/messages"
PUSHBULLET_URL = "https://api.pushbullet.com/v2/pushes"


def _sender_name(config: EmailSettings) -> str:
    return config.from_name or DEFAULT_FROM_NAME


def _send_with_sendgrid(options: EmailOptions, config: EmailSettings, credentials: ProviderCredentials) -> EmailResult:
    api_key = config.api_key or credentials.sendgrid_api_key
    if not api_key or not config.from_email:
        return EmailResult(False, "SendGrid configuration is incomplete")

    payload = {
        "personalizations": [{"to": [{"email": options.to}]}],
        "from": {"email": config.from_email, "name": _sender_name(config)},
        "subject": options.subject,
        "content": [
            {"type": "text/plain", "value": options.text},
            {"type": "text/html", "value": options.html or options.text},
        ],
    }
    response = httpx.post(
        SENDGRID_URL,
        json=payload,
        headers={"Authorization": f"Bearer {api_key}"},
        timeout=HTTP_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    return EmailResult(True)


def _send_with_mailgun(options: EmailOptions, config: EmailSettings, credentials: ProviderCredentials) -> EmailResult:
    api_key = config.api_key or credentials.mailgun_api_key
    domain = config.domain or credentials.mailgun_domain
    if not api_key or not domain or not config.from_email:
        return EmailResult(False, "Mailgun configuration is incomplete")

    response = httpx.post(
        MAILGUN_URL.format(domain=domain),
        auth=("api", api_key),
        data={
            "from": f"{_sender_name(config)} <{config.from_email}>",
            "to": options.to,
            "subject": options.subject,
            "text": options.text,
            "html": options.html or options.text,
        },
        timeout=HTTP_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    return EmailResult(True)


def _send_with_pushbullet(options: EmailOptions, config: EmailSettings, credentials: ProviderCredentials) -> EmailResult:
    access_token = config.access_token or credentials.pushbullet_access_token
    if not access_token:
        return EmailResult(False, "Pushbullet configuration is incomplete")

    response = httpx.post(
        PUSHBULLET_URL,
        json={"type": "note", "title": options.subject, "body": options.text},
        headers={"Access-Token": access_token},
        timeout=HTTP_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    return EmailResult(True)


def _send_with_twilio(options: EmailOptions, config: EmailSettings, credentials: ProviderCredentials) -> EmailResult:
    return send_sms(options, config, credentials)


def _send_with_smtp(options: EmailOptions, config: EmailSettings, credentials: ProviderCredentials) -> EmailResult:
    """
    Send an email over SMTP.

    Port 465 uses implicit SSL; any other port uses STARTTLS.
    """
    host = config.host or credentials.smtp_host
    username = config.username or credentials.smtp_username
    password = config.password or credentials.smtp_password
    if not host or not username or not password:
        return EmailResult(False, "SMTP configuration is incomplete")
    try:
        port = int(config.port) if config.port else credentials.smtp_port
    except ValueError:
        return EmailResult(False, f"Invalid SMTP port: {config.port}")

    from_email = config.from_email or username
    msg = MIMEMultipart("alternative")
    msg["From"] = f"{_sender_name(config)} <{from_email}>"
    msg["To"] = options.to
    msg["Subject"] = options.subject
    msg.attach(MIMEText(options.text, "plain"))
    if options.html:
        msg.attach(MIMEText(options.html, "html"))

    logger.debug(f"Connecting to SMTP server: {host}:{port}")
    if port == 465:
        server = smtplib.SMTP_SSL(host, port, timeout=SMTP_TIMEOUT_SECONDS)
    else:
        server = smtplib.SMTP(host, port, timeout=SMTP_TIMEOUT_SECONDS)
    try:
        if port != 465:
            server.starttls()
        server.login(username, password)
        server.send_message(msg)
    except smtplib.SMTPAuthenticationError:
        logger.error(
            f"SMTP authentication failed for {username}. Common causes:\n"
            f"1. Password is incorrect or expired\n"
            f"2. For Gmail: Use an App Password, not your regular password\n"
            f"3. Check SMTP_USERNAME/SMTP_PASSWORD or the SMTP fields in your settings"
        )
        raise
    finally:
        server.quit()
    return EmailResult(True)


_PROVIDERS: Dict[str, Callable[[EmailOptions, EmailSettings, ProviderCredentials], EmailResult]] = {
    "sendgrid": _send_with_sendgrid,
    "mailgun": _send_with_mailgun,
    "twilio": _send_with_twilio,
    "pushbullet": _send_with_pushbullet,
    "smtp": _send_with_smtp,
}


def send_email(
    options: EmailOptions,
    settings: NotificationSettings,
    credentials: Optional[ProviderCredentials] = None,
) -> EmailResult:
    """
    Send an email using the configured provider.

    Args:
        options: Message to send.
        settings: The user's notification settings (provider + provider config).
        credentials: Environment credentials for blank settings fields.

    Returns:
        The outcome; transport errors are logged and reported, not raised.
    """
    credentials = credentials or ProviderCredentials()
    provider = settings.email_provider
    if not settings.email_notifications or not provider or provider == "none":
        return EmailResult(False, "Email notifications are disabled or not configured")

    if not settings.email_config.to_email:
        return EmailResult(False, "Recipient email address is not configured")

    handler = _PROVIDERS.get(provider)
    if handler is None:
        return EmailResult(False, "Unknown email provider")

    try:
        result = handler(options, settings.email_config, credentials)
    except (httpx.HTTPError, smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email via {provider}: {e}")
        return EmailResult(False, str(e))

    if result.success:
        logger.info(f"Email sent successfully to {options.to} via {provider}")
    else:
        logger.warning(f"Email not sent via {provider}: {result.message}")
    return result


def build_expiration_email(item_name: str, days_until_expiry: int, expiration_date: str, to_email: str) -> EmailOptions:
    subject = f"PrepperTrack Alert: {item_name} expires in {days_until_expiry} days"
    text = (
        f'Your item "{item_name}" will expire in {days_until_expiry} days '
        f"(on {expiration_date}). Please check your inventory and use or replace this item soon."
    )
    return EmailOptions(to=to_email, subject=subject, text=text)


class ProviderEmailSender(EmailSender):
    """EmailSender bound to the real providers."""

    def __init__(self, credentials: Optional[ProviderCredentials] = None):
        self.credentials = credentials or ProviderCredentials()

    def send(self, options: EmailOptions, settings: NotificationSettings) -> EmailResult:
        return send_email(options, settings, self.credentials)
