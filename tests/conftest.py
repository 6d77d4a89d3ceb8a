"""Shared fixtures for the reminder engine tests."""

from collections.abc import Callable
from datetime import datetime
from typing import Any

import pytest
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from testimo.channels.base import InvalidRecipient, NotificationChannel, RenderedMessage
from testimo.models.client import Client, WorkStatus
from testimo.models.project import Project
from testimo.models.reminder import Reminder, ReminderChannel, ReminderStatus


class RecordingChannel(NotificationChannel):
    """In-memory channel that records deliveries.

    ``error`` is raised instead of delivering; ``on_send`` runs first,
    which lets a test act while a send is in flight.
    """

    def __init__(
        self,
        channel: ReminderChannel = ReminderChannel.EMAIL,
        error: Exception | None = None,
        on_send: Callable[[Client, RenderedMessage], None] | None = None,
    ) -> None:
        self.channel = channel
        self.error = error
        self.on_send = on_send
        self.sent: list[tuple[str, RenderedMessage]] = []

    @property
    def is_configured(self) -> bool:
        return True

    def recipient_for(self, client: Client) -> str:
        if self.channel == ReminderChannel.SMS:
            if not client.phone:
                raise InvalidRecipient("Client does not have a phone number")
            return client.phone
        return client.email

    def deliver(self, client: Client, message: RenderedMessage) -> None:
        to = self.recipient_for(client)
        if self.on_send is not None:
            self.on_send(client, message)
        if self.error is not None:
            raise self.error
        self.sent.append((to, message))


@pytest.fixture
def engine():
    """Create an in-memory database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Import all models to register them
    from testimo.models import Client, Project, Reminder  # noqa: F401

    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(engine):
    """Create a test database session."""
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_channel():
    """The RecordingChannel class, for tests that need a failing or intrusive channel."""
    return RecordingChannel


@pytest.fixture
def email_channel() -> RecordingChannel:
    return RecordingChannel(ReminderChannel.EMAIL)


@pytest.fixture
def sms_channel() -> RecordingChannel:
    return RecordingChannel(ReminderChannel.SMS)


@pytest.fixture
def channels(email_channel, sms_channel) -> dict[ReminderChannel, NotificationChannel]:
    return {ReminderChannel.EMAIL: email_channel, ReminderChannel.SMS: sms_channel}


@pytest.fixture
def make_project(db_session: Session):
    """Factory for projects."""

    def _make(**overrides: Any) -> Project:
        data: dict[str, Any] = {
            "name": "Acme Website",
            "email_settings": {"fromName": "Jane Doe"},
            "sms_settings": {},
            "reminder_settings": {},
        }
        data.update(overrides)
        project = Project(**data)
        db_session.add(project)
        db_session.commit()
        db_session.refresh(project)
        return project

    return _make


@pytest.fixture
def make_client(db_session: Session):
    """Factory for clients of a project."""

    def _make(project: Project, **overrides: Any) -> Client:
        data: dict[str, Any] = {
            "project_id": project.id,
            "name": "Carol Client",
            "email": "carol@example.com",
            "phone": "+15551234567",
            "work_status": WorkStatus.IN_PROGRESS,
        }
        data.update(overrides)
        client = Client(**data)
        db_session.add(client)
        db_session.commit()
        db_session.refresh(client)
        return client

    return _make


@pytest.fixture
def make_reminder(db_session: Session):
    """Factory for reminders; due at 2024-01-01 09:00 by default."""

    def _make(client: Client, **overrides: Any) -> Reminder:
        data: dict[str, Any] = {
            "project_id": client.project_id,
            "client_id": client.id,
            "channel": ReminderChannel.EMAIL,
            "scheduled_at": datetime(2024, 1, 1, 9, 0, 0),
            "status": ReminderStatus.PENDING,
            "meta": {},
        }
        data.update(overrides)
        reminder = Reminder(**data)
        db_session.add(reminder)
        db_session.commit()
        db_session.refresh(reminder)
        return reminder

    return _make
