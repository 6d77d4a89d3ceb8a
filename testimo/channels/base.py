"""Notification channel abstraction.

A channel turns a rendered message into one outbound provider call.
Success returns ``None``; every failure is raised as a ``SendError``
subclass whose ``kind`` is stored on the reminder for operator triage.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from testimo.models.client import Client
from testimo.models.reminder import ReminderChannel


class SendErrorKind(str, Enum):
    """Failure categories recorded in ``metadata.errorKind``."""

    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_RECIPIENT = "invalid_recipient"
    PROVIDER_REJECTED = "provider_rejected"


class SendError(Exception):
    """A channel could not deliver a message."""

    kind: SendErrorKind = SendErrorKind.PROVIDER_REJECTED

    def __init__(self, message: str, provider_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider_code = provider_code

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "provider_code": self.provider_code,
        }


class ChannelUnavailable(SendError):
    """Provider not configured or not reachable."""

    kind = SendErrorKind.PROVIDER_UNAVAILABLE


class InvalidRecipient(SendError):
    """Address or phone number missing or malformed."""

    kind = SendErrorKind.INVALID_RECIPIENT


class ProviderRejected(SendError):
    """The provider API answered with an error."""

    kind = SendErrorKind.PROVIDER_REJECTED


@dataclass(frozen=True)
class RenderedMessage:
    """Message content ready for a channel."""

    channel: ReminderChannel
    text: str
    subject: str | None = None
    html: str | None = None
    from_name: str | None = None


class NotificationChannel(ABC):
    """Base class for delivery channels.

    Subclasses expose a provider-shaped ``send`` and implement
    ``recipient_for`` and ``deliver`` so the scheduler can treat every
    channel the same way.
    """

    channel: ReminderChannel

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether provider credentials are present."""

    @abstractmethod
    def recipient_for(self, client: Client) -> str:
        """Return the client's address on this channel.

        Raises:
            InvalidRecipient: If the client has no usable address
        """

    @abstractmethod
    def deliver(self, client: Client, message: RenderedMessage) -> None:
        """Send ``message`` to ``client``.

        Raises:
            SendError: On any delivery failure
        """

    def close(self) -> None:
        """Release provider connections."""
