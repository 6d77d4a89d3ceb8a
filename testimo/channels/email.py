"""Email channel backed by the Resend HTTP API."""

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

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class EmailChannel(NotificationChannel):
    """Sends testimonial requests as email."""

    channel = ReminderChannel.EMAIL

    def __init__(
        self,
        api_key: str,
        from_address: str,
        from_name: str = "Testimo",
        timeout: float = 10.0,
        base_url: str = "https://api.resend.com",
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name
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
        return bool(self.api_key)

    def recipient_for(self, client: Client) -> str:
        address = (client.email or "").strip()
        if not EMAIL_PATTERN.match(address):
            raise InvalidRecipient(f"Invalid email address: {address!r}")
        return address

    def deliver(self, client: Client, message: RenderedMessage) -> None:
        to = self.recipient_for(client)
        self.send(
            to=to,
            from_=self._format_sender(message.from_name),
            subject=message.subject or "",
            text=message.text,
            html=message.html,
        )

    def send(
        self,
        to: str,
        from_: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> None:
        """Send one email.

        Raises:
            ChannelUnavailable: No API key, timeout or connection failure
            InvalidRecipient: Malformed recipient address
            ProviderRejected: Resend answered with an error status
        """
        if not self.is_configured:
            raise ChannelUnavailable("Email functionality is not available - RESEND_API_KEY not configured")
        if not EMAIL_PATTERN.match(to):
            raise InvalidRecipient(f"Invalid email address: {to!r}")

        payload = {"from": from_, "to": [to], "subject": subject, "text": text}
        if html:
            payload["html"] = html

        try:
            response = self.client.post(
                f"{self.base_url}/emails",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ChannelUnavailable(f"Email provider timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            code, detail = _resend_error(e.response)
            raise ProviderRejected(f"Email provider rejected message: {detail}", provider_code=code) from e
        except httpx.RequestError as e:
            raise ChannelUnavailable(f"Email provider unreachable: {e}") from e

        logger.info(
            f"Email sent successfully to {to}",
            extra={"to": to, "provider_id": _response_id(response)},
        )

    def _format_sender(self, from_name: str | None) -> str:
        return f"{from_name or self.from_name} <{self.from_address}>"

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def _resend_error(response: httpx.Response) -> tuple[str, str]:
    try:
        body = response.json()
    except ValueError:
        return str(response.status_code), response.text[:200]
    code = body.get("name") or str(response.status_code)
    return str(code), str(body.get("message") or response.reason_phrase)


def _response_id(response: httpx.Response) -> str | None:
    try:
        return response.json().get("id")
    except ValueError:
        return None
