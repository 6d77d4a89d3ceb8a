"""Reminder scheduler: the polling core of the reminder engine.

Each cycle (tick):
1. Loads pending reminders joined with their clients, keeps the due ones
2. Fails reminders whose client or project is gone
3. Cancels reminders of clients who opted out (not counted as an attempt)
4. Renders and sends the rest through the reminder's channel
5. Enqueues the next occurrence of recurring reminders that were sent

Failed sends are not retried and end their recurrence chain.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from uuid import UUID

from sqlmodel import Session

from testimo.channels.base import NotificationChannel
from testimo.config import get_settings
from testimo.models.reminder import CancelReason, ReminderChannel
from testimo.services.dispatch import INTERNAL_ERROR_KIND, ReminderDispatcher
from testimo.services.errors import ClientNotFound, ProjectNotFound
from testimo.services.recurrence import RecurrencePlanner
from testimo.services.store import (
    PendingReminder,
    ProjectStore,
    ReminderStore,
    SQLReminderStore,
)
from testimo.workers.base import ItemOutcome, WorkerBase

logger = logging.getLogger(__name__)


class ReminderScheduler(WorkerBase[PendingReminder]):
    """Worker that dispatches due reminders.

    Channels are injected so tests and alternative providers share the
    same dispatch logic.
    """

    def __init__(
        self,
        channels: Mapping[ReminderChannel, NotificationChannel],
        base_url: str | None = None,
        batch_size: int | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        planner: RecurrencePlanner | None = None,
        store_factory: Callable[[Session], ReminderStore] = SQLReminderStore,
    ) -> None:
        settings = get_settings()
        super().__init__(batch_size=batch_size or settings.REMINDER_BATCH_SIZE)
        self.clock = clock
        self.store_factory = store_factory
        self.dispatcher = ReminderDispatcher(
            channels,
            base_url=base_url or settings.APP_BASE_URL,
            planner=planner,
            clock=clock,
        )

    @property
    def worker_name(self) -> str:
        return "ReminderScheduler"

    def fetch_pending(self, session: Session) -> list[PendingReminder]:
        """Fetch pending reminders whose scheduled time has come."""
        return self.store_factory(session).all_pending_reminders(
            due_before=self.clock(), limit=self.batch_size
        )

    def process_item(self, session: Session, item: PendingReminder) -> ItemOutcome:
        """Run one due reminder through the dispatch state machine."""
        store = self.store_factory(session)
        reminder, client = item.reminder, item.client

        if client is None:
            logger.error(
                f"Client not found for reminder {reminder.id}",
                extra={"reminder_id": str(reminder.id), "client_id": str(reminder.client_id)},
            )
            self.dispatcher.record_failure(store, reminder, "Client not found", ClientNotFound.kind)
            return ItemOutcome.FAILED

        if client.reminder_opt_out:
            logger.info(
                f"Client {client.email} has opted out, canceling reminder {reminder.id}",
                extra={"reminder_id": str(reminder.id), "client_id": str(client.id)},
            )
            if self.dispatcher.cancel(store, reminder, CancelReason.CLIENT_OPTED_OUT.value):
                return ItemOutcome.CANCELED
            return ItemOutcome.SKIPPED

        project = ProjectStore(session).get(reminder.project_id)
        if project is None:
            logger.error(
                f"Project not found for reminder {reminder.id}",
                extra={"reminder_id": str(reminder.id), "project_id": str(reminder.project_id)},
            )
            self.dispatcher.record_failure(store, reminder, "Project not found", ProjectNotFound.kind)
            return ItemOutcome.FAILED

        logger.info(
            f"Processing reminder {reminder.id} for {client.email} via {reminder.channel.value}",
            extra={"reminder_id": str(reminder.id), "channel": reminder.channel.value},
        )

        result = self.dispatcher.dispatch(store, reminder, client, project, automated=True)
        if not result.recorded:
            # Canceled while the send was in flight
            return ItemOutcome.SKIPPED
        if not result.sent:
            return ItemOutcome.FAILED

        self.dispatcher.continue_recurrence(store, reminder, project)
        return ItemOutcome.PROCESSED

    def handle_error(self, session: Session, item: PendingReminder, error: str) -> None:
        """Mark a reminder failed after an unexpected exception."""
        self.dispatcher.record_failure(
            self.store_factory(session),
            item.reminder,
            error or "Unknown error",
            INTERNAL_ERROR_KIND,
        )

    def get_item_id(self, item: PendingReminder) -> UUID:
        return item.reminder.id

    def close(self) -> None:
        """Release channel connections."""
        for channel in self.dispatcher.channels.values():
            channel.close()
