"""API dependencies for dependency injection."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from sqlmodel import Session

from testimo.channels.base import ChannelUnavailable, InvalidRecipient, SendError
from testimo.db.session import get_session
from testimo.services.errors import (
    ClientNotFound,
    InvalidTransition,
    ProjectNotFound,
    RecipientOptedOut,
    ReminderError,
    ReminderNotFound,
)
from testimo.services.reminders import ReminderService, get_reminder_service


def get_db_session() -> Generator[Session, None, None]:
    """Get database session dependency."""
    yield from get_session()


DBSession = Annotated[Session, Depends(get_db_session)]
Reminders = Annotated[ReminderService, Depends(get_reminder_service)]


def http_error(error: ReminderError | SendError) -> HTTPException:
    """Translate a lifecycle or delivery error into an HTTP error."""
    if isinstance(error, (ReminderNotFound, ClientNotFound, ProjectNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (RecipientOptedOut, InvalidTransition)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, InvalidRecipient):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=error.to_dict())
    if isinstance(error, ChannelUnavailable):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=error.to_dict())
    if isinstance(error, SendError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error.to_dict())
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
