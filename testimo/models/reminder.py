"""Reminder entity model.

A reminder is one scheduled attempt to ask a client for a testimonial.
The row keeps a loose JSON ``metadata`` document (camelCase keys, as the
dashboard reads them); in memory the outcome of an attempt is modelled
by the ``Sent`` / ``Failed`` / ``Canceled`` value objects and recurrence
state by ``RecurrenceInfo``.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Union
from uuid import UUID, uuid4

from pydantic import BaseModel
from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel


class ReminderStatus(str, Enum):
    """Reminder status values."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELED = "canceled"


# Statuses from which a manual send-now may dispatch
DISPATCHABLE_STATUSES = frozenset({ReminderStatus.PENDING, ReminderStatus.FAILED})


class ReminderChannel(str, Enum):
    """Reminder delivery channels."""

    EMAIL = "email"
    SMS = "sms"


class RecurringInterval(str, Enum):
    """Known recurrence intervals."""

    DAILY = "daily"
    ALTERNATE_DAYS = "alternate_days"
    WEEKLY = "weekly"


class CancelReason(str, Enum):
    """Why a pending reminder was canceled."""

    CLIENT_OPTED_OUT = "client_opted_out"
    TESTIMONIAL_RECEIVED = "testimonial_received"
    USER_CANCELED = "user_canceled"


# Keys written when an attempt reaches a terminal state. They describe
# one attempt and are never carried over to a recurring successor.
OUTCOME_METADATA_KEYS = frozenset({
    "sentAt",
    "failedAt",
    "canceledAt",
    "processedAt",
    "error",
    "errorKind",
    "providerCode",
    "cancelReason",
    "automated",
    "immediate",
})


class Reminder(SQLModel, table=True):
    """Reminder database model."""

    __tablename__ = "reminders"
    __table_args__ = (
        Index("idx_reminders_status_scheduled", "status", "scheduled_at"),
        Index("idx_reminders_project_status", "project_id", "status"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    project_id: UUID = Field(foreign_key="projects.id")
    client_id: UUID = Field(foreign_key="clients.id", index=True)
    channel: ReminderChannel
    template_key: str | None = Field(default=None, max_length=100)
    scheduled_at: datetime = Field(index=True)
    status: ReminderStatus = Field(default=ReminderStatus.PENDING)
    attempt_number: int = Field(default=0)
    # "metadata" is reserved on declarative classes, hence the attribute name
    meta: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False, default=dict),
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def recurrence(self) -> "RecurrenceInfo":
        return RecurrenceInfo.from_metadata(self.meta)


# -----------------------------------------------------------------------------
# Outcome value objects
# -----------------------------------------------------------------------------


def _iso(value: datetime) -> str:
    return value.isoformat()


@dataclass(frozen=True)
class Sent:
    """Attempt delivered by the provider."""

    at: datetime
    automated: bool = True

    status = ReminderStatus.SENT

    def to_metadata(self) -> dict[str, Any]:
        return {
            "sentAt": _iso(self.at),
            "processedAt": _iso(self.at),
            "automated": self.automated,
        }


@dataclass(frozen=True)
class Failed:
    """Attempt that could not be delivered."""

    at: datetime
    error: str
    kind: str
    provider_code: str | None = None
    automated: bool = True

    status = ReminderStatus.FAILED

    def to_metadata(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "failedAt": _iso(self.at),
            "processedAt": _iso(self.at),
            "error": self.error,
            "errorKind": self.kind,
            "automated": self.automated,
        }
        if self.provider_code is not None:
            data["providerCode"] = self.provider_code
        return data


@dataclass(frozen=True)
class Canceled:
    """Reminder withdrawn before dispatch."""

    at: datetime
    reason: str

    status = ReminderStatus.CANCELED

    def to_metadata(self) -> dict[str, Any]:
        return {
            "canceledAt": _iso(self.at),
            "processedAt": _iso(self.at),
            "cancelReason": self.reason,
        }


ReminderOutcome = Union[Sent, Failed, Canceled]


@dataclass(frozen=True)
class RecurrenceInfo:
    """Recurrence state stored in a reminder's metadata."""

    recurring: bool = False
    interval: str | None = None
    sequence: int = 0
    parent_reminder_id: str | None = None

    @classmethod
    def from_metadata(cls, metadata: dict[str, Any] | None) -> "RecurrenceInfo":
        metadata = metadata or {}
        try:
            sequence = int(metadata.get("recurringSequence") or 0)
        except (TypeError, ValueError):
            sequence = 0
        return cls(
            recurring=bool(metadata.get("recurring")),
            interval=metadata.get("recurringInterval") or None,
            sequence=sequence,
            parent_reminder_id=metadata.get("parentReminderId"),
        )

    def to_metadata(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "recurring": self.recurring,
            "recurringSequence": self.sequence,
        }
        if self.interval is not None:
            data["recurringInterval"] = self.interval
        if self.parent_reminder_id is not None:
            data["parentReminderId"] = self.parent_reminder_id
        return data


# -----------------------------------------------------------------------------
# API schemas
# -----------------------------------------------------------------------------


class ReminderCreate(BaseModel):
    """Schema for reminder creation."""

    client_id: UUID
    channel: ReminderChannel = ReminderChannel.EMAIL
    scheduled_at: datetime
    template_key: str | None = None
    metadata: dict[str, Any] | None = None


class ReminderUpdate(BaseModel):
    """Schema for a partial reminder update."""

    status: ReminderStatus | None = None
    scheduled_at: datetime | None = None
    template_key: str | None = None
    metadata: dict[str, Any] | None = None


class ReminderResponse(BaseModel):
    """Schema for reminder response."""

    id: UUID
    project_id: UUID
    client_id: UUID
    channel: ReminderChannel
    template_key: str | None
    scheduled_at: datetime
    status: ReminderStatus
    attempt_number: int
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_reminder(cls, reminder: Reminder) -> "ReminderResponse":
        return cls(
            id=reminder.id,
            project_id=reminder.project_id,
            client_id=reminder.client_id,
            channel=reminder.channel,
            template_key=reminder.template_key,
            scheduled_at=reminder.scheduled_at,
            status=reminder.status,
            attempt_number=reminder.attempt_number,
            metadata=dict(reminder.meta or {}),
            created_at=reminder.created_at,
            updated_at=reminder.updated_at,
        )
