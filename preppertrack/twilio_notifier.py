"""Twilio SMS notification module."""

import logging

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from .config import ProviderCredentials
from .models import EmailOptions, EmailResult, EmailSettings

logger = logging.getLogger(__name__)

SMS_MAX_LENGTH = 160


def send_sms(options: EmailOptions, email_config: EmailSettings, credentials: ProviderCredentials) -> EmailResult:
    """
    Send an alert as an SMS via Twilio.

    Args:
        options: The message; subject and text are combined into the SMS body.
        email_config: Provider settings from the user's notification settings.
        credentials: Environment credentials used for blank settings fields.

    Returns:
        The outcome of the send.
    """
    account_sid = email_config.account_sid or credentials.twilio_account_sid
    auth_token = email_config.auth_token or credentials.twilio_auth_token
    from_phone = email_config.from_phone or credentials.twilio_from_number
    to_phone = email_config.to_phone or credentials.twilio_to_number
    if not (account_sid and auth_token and from_phone and to_phone):
        return EmailResult(False, "Twilio configuration is incomplete")

    body = f"{options.subject}: {options.text}"[:SMS_MAX_LENGTH]
    try:
        client = Client(account_sid, auth_token)
        message = client.messages.create(body=body, from_=from_phone, to=to_phone)
    except TwilioRestException as e:
        if e.code == 20003 or e.status == 401:
            logger.error(
                "Twilio authentication failed (Error 20003).\n"
                "Common causes:\n"
                "1. Account SID is incorrect or missing\n"
                "2. Auth token is incorrect or missing\n"
                "3. Credentials may have been regenerated - check your Twilio dashboard\n"
                f"Current Account SID (first 10 chars): {account_sid[:10]}..."
            )
        else:
            logger.error(f"Failed to send SMS: {e}")
        return EmailResult(False, str(e))

    logger.info(f"SMS sent successfully. SID: {message.sid}")
    logger.debug(f"Message preview: {body[:50]}...")
    return EmailResult(True)
