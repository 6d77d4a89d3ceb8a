"""SQLModel entities for the reminder engine."""

from testimo.models.client import Client, WorkStatus
from testimo.models.project import Project, ReminderPolicy, ScheduleRule
from testimo.models.reminder import (
    Canceled,
    Failed,
    RecurrenceInfo,
    Reminder,
    ReminderChannel,
    ReminderOutcome,
    ReminderStatus,
    Sent,
)

__all__ = [
    "Client",
    "WorkStatus",
    "Project",
    "ReminderPolicy",
    "ScheduleRule",
    "Reminder",
    "ReminderChannel",
    "ReminderStatus",
    "ReminderOutcome",
    "RecurrenceInfo",
    "Sent",
    "Failed",
    "Canceled",
]
