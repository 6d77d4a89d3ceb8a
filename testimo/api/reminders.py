"""Reminder API endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from testimo.api.deps import DBSession, Reminders, http_error
from testimo.channels.base import SendError
from testimo.models.reminder import ReminderCreate, ReminderResponse, ReminderUpdate
from testimo.services.errors import ReminderError

router = APIRouter(prefix="/api", tags=["Reminders"])


@router.post(
    "/projects/{project_id}/reminders",
    response_model=ReminderResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_reminder_endpoint(
    session: DBSession,
    service: Reminders,
    project_id: UUID,
    reminder_data: ReminderCreate,
) -> ReminderResponse:
    """Schedule a reminder for a client of the project."""
    try:
        reminder = service.create_reminder(
            session,
            project_id=project_id,
            client_id=reminder_data.client_id,
            channel=reminder_data.channel,
            scheduled_at=reminder_data.scheduled_at,
            template_key=reminder_data.template_key,
            metadata=reminder_data.metadata,
        )
    except ReminderError as e:
        raise http_error(e) from e
    return ReminderResponse.from_reminder(reminder)


@router.get("/projects/{project_id}/reminders", response_model=list[ReminderResponse])
def list_pending_reminders_endpoint(
    session: DBSession,
    service: Reminders,
    project_id: UUID,
) -> list[ReminderResponse]:
    """List the project's pending reminders, soonest first."""
    try:
        reminders = service.list_pending_reminders(session, project_id)
    except ReminderError as e:
        raise http_error(e) from e
    return [ReminderResponse.from_reminder(r) for r in reminders]


@router.post("/reminders/{reminder_id}/send", response_model=ReminderResponse)
def send_reminder_endpoint(
    session: DBSession,
    service: Reminders,
    reminder_id: UUID,
) -> ReminderResponse:
    """Send a pending or failed reminder right away."""
    try:
        service.send_now(session, reminder_id)
    except (ReminderError, SendError) as e:
        raise http_error(e) from e
    return ReminderResponse.from_reminder(service.get_reminder(session, reminder_id))


@router.patch("/reminders/{reminder_id}", response_model=ReminderResponse)
def update_reminder_endpoint(
    session: DBSession,
    service: Reminders,
    reminder_id: UUID,
    reminder_data: ReminderUpdate,
) -> ReminderResponse:
    """Reschedule, cancel or annotate a reminder."""
    try:
        reminder = service.update_reminder(
            session, reminder_id, reminder_data.model_dump(exclude_unset=True)
        )
    except ReminderError as e:
        raise http_error(e) from e
    return ReminderResponse.from_reminder(reminder)


@router.delete("/reminders/{reminder_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_reminder_endpoint(
    session: DBSession,
    service: Reminders,
    reminder_id: UUID,
) -> None:
    """Delete a reminder."""
    try:
        service.delete_reminder(session, reminder_id)
    except ReminderError as e:
        raise http_error(e) from e
