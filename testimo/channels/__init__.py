"""Delivery channels for testimonial reminders.

Channels:
- email.py: Resend HTTP API
- sms.py: Twilio Messages REST API
"""

from testimo.channels.base import (
    ChannelUnavailable,
    InvalidRecipient,
    NotificationChannel,
    ProviderRejected,
    RenderedMessage,
    SendError,
    SendErrorKind,
)
from testimo.channels.email import EmailChannel
from testimo.channels.sms import SmsChannel
from testimo.config import Settings, get_settings
from testimo.models.reminder import ReminderChannel


def build_channels(settings: Settings | None = None) -> dict[ReminderChannel, NotificationChannel]:
    """Create one channel per delivery method from settings.

    Channels are always registered; an unconfigured one fails its sends
    with ChannelUnavailable instead of disappearing.
    """
    settings = settings or get_settings()
    return {
        ReminderChannel.EMAIL: EmailChannel(
            api_key=settings.RESEND_API_KEY,
            from_address=settings.EMAIL_FROM,
            from_name=settings.EMAIL_FROM_NAME,
            timeout=settings.REMINDER_SEND_TIMEOUT_SECONDS,
            base_url=settings.RESEND_API_URL,
        ),
        ReminderChannel.SMS: SmsChannel(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_PHONE_NUMBER,
            timeout=settings.REMINDER_SEND_TIMEOUT_SECONDS,
            base_url=settings.TWILIO_API_URL,
        ),
    }


__all__ = [
    "NotificationChannel",
    "RenderedMessage",
    "SendError",
    "SendErrorKind",
    "ChannelUnavailable",
    "InvalidRecipient",
    "ProviderRejected",
    "EmailChannel",
    "SmsChannel",
    "build_channels",
]
