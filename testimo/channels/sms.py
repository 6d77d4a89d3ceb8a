"""SMS channel backed by the Twilio Messages REST API."""

import logging
import re

import httpx

from testimo.channels.base import (
    ChannelUnavailable,
    InvalidRecipient,
    NotificationChannel,
    ProviderRejected,
    RenderedMessage,
)
from testimo.models.client import Client
from testimo.models.reminder import ReminderChannel

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9\s\-().]{5,19}$")

# Twilio error codes that mean the number itself is unusable
INVALID_NUMBER_CODES = frozenset({"21211", "21614"})


class SmsChannel(NotificationChannel):
    """Sends testimonial requests as text messages."""

    channel = ReminderChannel.SMS

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout: float = 10.0,
        base_url: str = "https://api.twilio.com",
        client: httpx.Client | None = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialize HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    @property
    def is_configured(self) -> bool:
        return (
            self.account_sid.startswith("AC")
            and bool(self.auth_token)
            and bool(self.from_number)
        )

    def recipient_for(self, client: Client) -> str:
        if not client.phone:
            raise InvalidRecipient("Client does not have a phone number")
        return client.phone.strip()

    def deliver(self, client: Client, message: RenderedMessage) -> None:
        self.send(to=self.recipient_for(client), body=message.text)

    def send(self, to: str, body: str) -> None:
        """Send one text message.

        Raises:
            ChannelUnavailable: Twilio not configured, timeout or connection failure
            InvalidRecipient: Malformed number or Twilio invalid-number error
            ProviderRejected: Any other Twilio error
        """
        if not self.is_configured:
            raise ChannelUnavailable("SMS functionality is not available - Twilio not properly configured")
        if not PHONE_PATTERN.match(to):
            raise InvalidRecipient(f"Invalid phone number format: {to!r}")

        url = f"{self.base_url}/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        try:
            response = self.client.post(
                url,
                data={"To": to, "From": self.from_number, "Body": body},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ChannelUnavailable(f"SMS provider timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            code, detail = _twilio_error(e.response)
            if code in INVALID_NUMBER_CODES:
                raise InvalidRecipient(f"Invalid phone number format: {detail}", provider_code=code) from e
            raise ProviderRejected(f"SMS provider rejected message: {detail}", provider_code=code) from e
        except httpx.RequestError as e:
            raise ChannelUnavailable(f"SMS provider unreachable: {e}") from e

        logger.info(
            f"SMS sent successfully to {to}",
            extra={"to": to, "sid": _message_sid(response)},
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def _twilio_error(response: httpx.Response) -> tuple[str, str]:
    try:
        body = response.json()
    except ValueError:
        return str(response.status_code), response.text[:200]
    code = body.get("code") or response.status_code
    return str(code), str(body.get("message") or response.reason_phrase)


def _message_sid(response: httpx.Response) -> str | None:
    try:
        return response.json().get("sid")
    except ValueError:
        return None
