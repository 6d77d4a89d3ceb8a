"""Project entity model and its reminder policy."""

import logging
from datetime import datetime, timezone, tzinfo
from typing import Any
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from testimo.models.reminder import ReminderChannel

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIME = "09:00"


def parse_send_time(value: str) -> tuple[int, int]:
    """Split an "HH:MM" string into (hour, minute)."""
    hours, _, minutes = value.partition(":")
    hour, minute = int(hours), int(minutes or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time of day: {value!r}")
    return hour, minute


class ScheduleRule(BaseModel):
    """One automatic follow-up relative to the completion trigger.

    ``max_attempts`` and ``cooldown_days`` are stored with the policy but
    are not enforced anywhere in the dispatch path.
    """

    model_config = ConfigDict(populate_by_name=True)

    offset_days: int = PydanticField(default=3, alias="offsetDays", ge=0)
    send_time: str = PydanticField(default=DEFAULT_SEND_TIME, alias="sendTime")
    max_attempts: int = PydanticField(default=3, alias="maxAttempts")
    cooldown_days: int = PydanticField(default=7, alias="cooldownDays")

    @field_validator("send_time")
    @classmethod
    def _check_send_time(cls, value: str) -> str:
        parse_send_time(value)
        return value


class QuietHours(BaseModel):
    """Quiet hours window. Configurable, not enforced."""

    start: str = "22:00"
    end: str = "08:00"


class ReminderPolicy(BaseModel):
    """Per-project reminder policy stored in ``projects.reminder_settings``."""

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    channels: list[ReminderChannel] = PydanticField(
        default_factory=lambda: [ReminderChannel.EMAIL]
    )
    schedule: list[ScheduleRule] = PydanticField(
        default_factory=lambda: [ScheduleRule()]
    )
    quiet_hours: QuietHours = PydanticField(
        default_factory=QuietHours, alias="quietHours"
    )
    timezone: str = "UTC"

    @property
    def default_channel(self) -> ReminderChannel:
        return self.channels[0] if self.channels else ReminderChannel.EMAIL

    @property
    def send_time(self) -> str:
        """Time of day of the first schedule rule, used for recurrence."""
        if self.schedule:
            return self.schedule[0].send_time
        return DEFAULT_SEND_TIME

    @property
    def tzinfo(self) -> tzinfo:
        if not self.timezone or self.timezone.upper() == "UTC":
            return timezone.utc
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                f"Unknown project timezone {self.timezone!r}, using UTC",
                extra={"timezone": self.timezone},
            )
            return timezone.utc


class Project(SQLModel, table=True):
    """Project database model (read-only to the reminder engine)."""

    __tablename__ = "projects"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str | None = Field(default=None, max_length=255, index=True)
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None)
    is_active: bool = Field(default=True)
    email_settings: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False, default=dict)
    )
    sms_settings: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False, default=dict)
    )
    reminder_settings: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False, default=dict)
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def reminder_policy(self) -> ReminderPolicy:
        return ReminderPolicy.model_validate(self.reminder_settings or {})
