"""Services module for the reminder engine.

Services:
- reminders.py: Reminder lifecycle (CRUD, send-now, completion and receipt triggers)
- dispatch.py: Render, send and record one attempt (shared with the scheduler)
- recurrence.py: Next occurrence and policy schedule arithmetic
- templates.py: Placeholder rendering and default message templates
- store.py: Persistence contracts over SQLModel sessions
"""

from testimo.services.errors import (
    ClientNotFound,
    InvalidTransition,
    ProjectNotFound,
    RecipientOptedOut,
    ReminderError,
    ReminderNotFound,
)
from testimo.services.reminders import CompletionResult, ReminderService, get_reminder_service

__all__ = [
    "ReminderService",
    "CompletionResult",
    "get_reminder_service",
    # Errors
    "ReminderError",
    "ReminderNotFound",
    "ClientNotFound",
    "ProjectNotFound",
    "RecipientOptedOut",
    "InvalidTransition",
]
