"""Domain errors raised by the reminder lifecycle service."""

from uuid import UUID


class ReminderError(Exception):
    """Base class for reminder lifecycle errors."""

    kind = "reminder_error"


class ReminderNotFound(ReminderError):
    kind = "reminder_not_found"

    def __init__(self, reminder_id: UUID) -> None:
        super().__init__("Reminder not found")
        self.reminder_id = reminder_id


class ClientNotFound(ReminderError):
    kind = "client_not_found"

    def __init__(self, client_id: UUID | None = None) -> None:
        super().__init__("Client not found")
        self.client_id = client_id


class ProjectNotFound(ReminderError):
    kind = "project_not_found"

    def __init__(self, project_id: UUID | None = None) -> None:
        super().__init__("Project not found")
        self.project_id = project_id


class RecipientOptedOut(ReminderError):
    """The client asked not to receive reminders."""

    kind = "client_opted_out"

    def __init__(self, client_id: UUID) -> None:
        super().__init__("Client has opted out of reminders")
        self.client_id = client_id


class InvalidTransition(ReminderError):
    """Requested status change is not allowed from the current state."""

    kind = "invalid_transition"

    def __init__(self, current: str, requested: str | None = None) -> None:
        if requested:
            message = f"Cannot change reminder status from {current} to {requested}"
        else:
            message = f"Reminder is {current} and cannot be dispatched"
        super().__init__(message)
        self.current = current
        self.requested = requested
