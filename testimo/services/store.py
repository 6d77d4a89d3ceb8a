"""Persistence contracts for reminders and their collaborators.

ReminderStore is the only write path for reminder status, attempt count
and metadata. ``update_reminder`` shallow-merges ``metadata`` into the
stored document and, given ``expected_status``, writes with a single
conditional UPDATE so a concurrent transition cannot be overwritten.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, select

from testimo.models.client import Client
from testimo.models.project import Project
from testimo.models.reminder import Reminder, ReminderStatus

logger = logging.getLogger(__name__)

# Columns a partial update may touch
UPDATABLE_FIELDS = frozenset({
    "status",
    "attempt_number",
    "scheduled_at",
    "template_key",
    "metadata",
})


@dataclass
class PendingReminder:
    """A pending reminder joined with its client (None if the client is gone)."""

    reminder: Reminder
    client: Client | None


class ReminderStore(ABC):
    """Storage contract used by the scheduler and lifecycle service."""

    @abstractmethod
    def create_reminder(self, reminder: Reminder) -> Reminder:
        pass

    @abstractmethod
    def get_reminder(self, reminder_id: UUID) -> Reminder | None:
        pass

    @abstractmethod
    def update_reminder(
        self,
        reminder_id: UUID,
        partial: dict[str, Any],
        expected_status: ReminderStatus | None = None,
    ) -> Reminder | None:
        """Apply ``partial`` to a reminder.

        Args:
            reminder_id: The reminder ID
            partial: Field values; ``metadata`` is merged, the rest overwrite
            expected_status: Only write if the stored status still matches

        Returns:
            The updated reminder, or None if it does not exist or the
            status no longer matched
        """

    @abstractmethod
    def delete_reminder(self, reminder_id: UUID) -> bool:
        pass

    @abstractmethod
    def all_pending_reminders(
        self,
        due_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[PendingReminder]:
        """Pending reminders with their clients, soonest first.

        Args:
            due_before: Only reminders scheduled at or before this instant
            limit: Maximum number of rows
        """

    @abstractmethod
    def pending_reminders_for_project(self, project_id: UUID) -> list[Reminder]:
        pass

    @abstractmethod
    def pending_reminders_for_client(self, client_id: UUID) -> list[Reminder]:
        pass


class SQLReminderStore(ReminderStore):
    """ReminderStore over a SQLModel session. Every mutation commits."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create_reminder(self, reminder: Reminder) -> Reminder:
        self.session.add(reminder)
        self.session.commit()
        self.session.refresh(reminder)

        logger.info(
            "Reminder created",
            extra={
                "reminder_id": str(reminder.id),
                "client_id": str(reminder.client_id),
                "channel": reminder.channel.value,
                "scheduled_at": reminder.scheduled_at.isoformat(),
            },
        )
        return reminder

    def get_reminder(self, reminder_id: UUID) -> Reminder | None:
        return self.session.get(Reminder, reminder_id)

    def update_reminder(
        self,
        reminder_id: UUID,
        partial: dict[str, Any],
        expected_status: ReminderStatus | None = None,
    ) -> Reminder | None:
        unknown = set(partial) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update reminder fields: {sorted(unknown)}")

        current = self.session.get(Reminder, reminder_id)
        if current is None:
            return None

        values: dict[Any, Any] = {
            getattr(Reminder, key): value
            for key, value in partial.items()
            if key != "metadata"
        }
        if "metadata" in partial:
            values[Reminder.meta] = {**(current.meta or {}), **(partial["metadata"] or {})}
        values[Reminder.updated_at] = datetime.utcnow()

        statement = update(Reminder).where(Reminder.id == reminder_id)
        if expected_status is not None:
            statement = statement.where(Reminder.status == expected_status)
        statement = statement.values(values).execution_options(synchronize_session=False)

        result = self.session.exec(statement)
        self.session.commit()

        if result.rowcount == 0:
            logger.warning(
                "Reminder update skipped, status changed concurrently",
                extra={
                    "reminder_id": str(reminder_id),
                    "expected_status": expected_status.value if expected_status else None,
                },
            )
            self.session.expire(current)
            return None

        self.session.refresh(current)
        return current

    def delete_reminder(self, reminder_id: UUID) -> bool:
        reminder = self.session.get(Reminder, reminder_id)
        if reminder is None:
            return False
        self.session.delete(reminder)
        self.session.commit()
        return True

    def all_pending_reminders(
        self,
        due_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[PendingReminder]:
        statement = (
            select(Reminder, Client)
            .join(Client, Client.id == Reminder.client_id, isouter=True)
            .where(Reminder.status == ReminderStatus.PENDING)
        )
        if due_before is not None:
            statement = statement.where(Reminder.scheduled_at <= due_before)
        statement = statement.order_by(Reminder.scheduled_at)
        if limit is not None:
            statement = statement.limit(limit)

        rows = self.session.exec(statement).all()
        return [PendingReminder(reminder=reminder, client=client) for reminder, client in rows]

    def pending_reminders_for_project(self, project_id: UUID) -> list[Reminder]:
        return list(
            self.session.exec(
                select(Reminder)
                .where(Reminder.project_id == project_id)
                .where(Reminder.status == ReminderStatus.PENDING)
                .order_by(Reminder.scheduled_at)
            ).all()
        )

    def pending_reminders_for_client(self, client_id: UUID) -> list[Reminder]:
        return list(
            self.session.exec(
                select(Reminder)
                .where(Reminder.client_id == client_id)
                .where(Reminder.status == ReminderStatus.PENDING)
                .order_by(Reminder.scheduled_at)
            ).all()
        )


class ProjectStore:
    """Read access to projects."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, project_id: UUID) -> Project | None:
        return self.session.get(Project, project_id)


class ClientStore:
    """Read access to clients, plus the work status write used by the completion trigger."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, client_id: UUID) -> Client | None:
        return self.session.get(Client, client_id)

    def find_by_project_and_email(self, project_id: UUID, email: str) -> Client | None:
        return self.session.exec(
            select(Client)
            .where(Client.project_id == project_id)
            .where(Client.email == email)
        ).first()

    def save(self, client: Client) -> Client:
        client.updated_at = datetime.utcnow()
        self.session.add(client)
        self.session.commit()
        self.session.refresh(client)
        return client
