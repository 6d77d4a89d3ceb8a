"""Endpoints for the application events that drive reminders."""

from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel

from testimo.api.deps import DBSession, Reminders, http_error
from testimo.models.client import ClientStatusUpdate, WorkStatus
from testimo.models.reminder import ReminderResponse
from testimo.services.errors import ReminderError

router = APIRouter(prefix="/api", tags=["Triggers"])


class ClientStatusResponse(BaseModel):
    """Result of a client work status change."""

    client_id: UUID
    work_status: WorkStatus
    triggered: bool
    skipped_reason: str | None = None
    immediate_reminder: ReminderResponse | None = None
    immediate_error: dict | None = None
    scheduled: list[ReminderResponse] = []


class TestimonialNotice(BaseModel):
    """Schema for a testimonial submission notice."""

    client_email: str


class ReceiptResponse(BaseModel):
    canceled: int


@router.patch("/clients/{client_id}/status", response_model=ClientStatusResponse)
def update_client_status_endpoint(
    session: DBSession,
    service: Reminders,
    client_id: UUID,
    status_data: ClientStatusUpdate,
) -> ClientStatusResponse:
    """Update a client's work status; completing work starts the reminder flow."""
    try:
        result = service.handle_client_status_change(session, client_id, status_data.work_status)
    except ReminderError as e:
        raise http_error(e) from e

    return ClientStatusResponse(
        client_id=result.client.id,
        work_status=result.client.work_status,
        triggered=result.triggered,
        skipped_reason=result.skipped_reason,
        immediate_reminder=(
            ReminderResponse.from_reminder(result.immediate_reminder)
            if result.immediate_reminder
            else None
        ),
        immediate_error=result.immediate_error.to_dict() if result.immediate_error else None,
        scheduled=[ReminderResponse.from_reminder(r) for r in result.scheduled],
    )


@router.post(
    "/projects/{project_id}/testimonials/received",
    response_model=ReceiptResponse,
)
def testimonial_received_endpoint(
    session: DBSession,
    service: Reminders,
    project_id: UUID,
    payload: TestimonialNotice,
) -> ReceiptResponse:
    """Stop reminding a client who has submitted a testimonial."""
    canceled = service.handle_testimonial_received(session, project_id, payload.client_email)
    return ReceiptResponse(canceled=canceled)
