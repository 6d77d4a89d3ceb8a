"""Render, send and record one reminder attempt.

Shared by the scheduler tick and the manual send-now path so both record
outcomes identically. Every status write is a compare-and-set against
the status the reminder had when dispatch started.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError

from testimo.channels.base import ChannelUnavailable, NotificationChannel, SendError
from testimo.models.client import Client
from testimo.models.project import Project
from testimo.models.reminder import (
    Canceled,
    Failed,
    Reminder,
    ReminderChannel,
    ReminderOutcome,
    ReminderStatus,
    Sent,
)
from testimo.services.recurrence import RecurrencePlanner
from testimo.services.store import ReminderStore
from testimo.services.templates import render_message

logger = logging.getLogger(__name__)

INTERNAL_ERROR_KIND = "internal_error"


@dataclass
class DispatchResult:
    """Outcome of one dispatch attempt.

    Attributes:
        outcome: Sent or Failed
        recorded: False if the reminder changed status while the send
            was in flight, so the outcome was not written
        error: The delivery error, if any
    """

    outcome: ReminderOutcome
    recorded: bool
    error: SendError | None = None

    @property
    def sent(self) -> bool:
        return isinstance(self.outcome, Sent)


class ReminderDispatcher:
    """Delivers reminders through injected channels.

    Args:
        channels: One NotificationChannel per ReminderChannel
        base_url: Base of the public testimonial submission link
        planner: Recurrence planner (default: new RecurrencePlanner)
        clock: Returns naive UTC "now"
    """

    def __init__(
        self,
        channels: Mapping[ReminderChannel, NotificationChannel],
        base_url: str,
        planner: RecurrencePlanner | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.channels = dict(channels)
        self.base_url = base_url
        self.clock = clock
        self.planner = planner or RecurrencePlanner(clock=clock)

    def channel_for(self, channel: ReminderChannel) -> NotificationChannel:
        try:
            return self.channels[channel]
        except KeyError:
            raise ChannelUnavailable(f"No {channel.value} channel configured") from None

    def dispatch(
        self,
        store: ReminderStore,
        reminder: Reminder,
        client: Client,
        project: Project,
        automated: bool = True,
    ) -> DispatchResult:
        """Send one reminder and record the outcome.

        Delivery failures are recorded, not raised; the original
        SendError is kept on the result for callers that surface it.
        """
        expected = reminder.status
        outcome, error = self.attempt(reminder, client, project, automated=automated)

        recorded = self.record_attempt(store, reminder, outcome, expected)
        if not recorded:
            logger.warning(
                f"Reminder {reminder.id} left {expected.value} during dispatch, outcome not recorded",
                extra={"reminder_id": str(reminder.id), "outcome": outcome.status.value},
            )
        return DispatchResult(outcome=outcome, recorded=recorded, error=error)

    def attempt(
        self,
        reminder: Reminder,
        client: Client,
        project: Project,
        automated: bool = True,
    ) -> tuple[ReminderOutcome, SendError | None]:
        """Render and send without touching storage."""
        error: SendError | None = None
        try:
            channel = self.channel_for(reminder.channel)
            message = render_message(
                reminder.channel,
                project,
                client,
                self.base_url,
                template_key=reminder.template_key,
            )
            channel.deliver(client, message)
        except SendError as e:
            error = e
            outcome: ReminderOutcome = Failed(
                at=self.clock(),
                error=e.message,
                kind=e.kind.value,
                provider_code=e.provider_code,
                automated=automated,
            )
            logger.warning(
                f"Reminder {reminder.id} delivery failed via {reminder.channel.value}",
                extra={
                    "reminder_id": str(reminder.id),
                    "channel": reminder.channel.value,
                    "error_kind": e.kind.value,
                    "error": e.message,
                    "provider_code": e.provider_code,
                },
            )
        else:
            outcome = Sent(at=self.clock(), automated=automated)
        return outcome, error

    def record_attempt(
        self,
        store: ReminderStore,
        reminder: Reminder,
        outcome: ReminderOutcome,
        expected: ReminderStatus,
    ) -> bool:
        """Write a dispatch outcome; counts as an attempt."""
        attempt = (reminder.attempt_number or 0) + 1
        updated = store.update_reminder(
            reminder.id,
            {
                "status": outcome.status,
                "attempt_number": attempt,
                "metadata": outcome.to_metadata(),
            },
            expected_status=expected,
        )
        return updated is not None

    def record_failure(
        self,
        store: ReminderStore,
        reminder: Reminder,
        error: str,
        kind: str,
        expected: ReminderStatus = ReminderStatus.PENDING,
        automated: bool = True,
    ) -> bool:
        """Fail a reminder without a dispatch attempt (missing client or project)."""
        outcome = Failed(at=self.clock(), error=error, kind=kind, automated=automated)
        updated = store.update_reminder(
            reminder.id,
            {"status": outcome.status, "metadata": outcome.to_metadata()},
            expected_status=expected,
        )
        return updated is not None

    def cancel(
        self,
        store: ReminderStore,
        reminder: Reminder,
        reason: str,
    ) -> bool:
        """Cancel a pending reminder; never touches one that already left pending."""
        outcome = Canceled(at=self.clock(), reason=reason)
        updated = store.update_reminder(
            reminder.id,
            {"status": outcome.status, "metadata": outcome.to_metadata()},
            expected_status=ReminderStatus.PENDING,
        )
        return updated is not None

    def continue_recurrence(
        self,
        store: ReminderStore,
        reminder: Reminder,
        project: Project,
    ) -> Reminder | None:
        """Enqueue the next reminder of a recurring chain, if any.

        A project policy that cannot be parsed ends the chain; the reminder
        itself stays sent.
        """
        if not reminder.recurrence.recurring:
            return None

        try:
            policy = project.reminder_policy
        except ValidationError as e:
            logger.error(
                f"Invalid reminder settings on project {project.id}, recurrence stopped",
                extra={
                    "reminder_id": str(reminder.id),
                    "project_id": str(project.id),
                    "error": str(e),
                },
            )
            return None

        successor = self.planner.build_successor(reminder, policy)
        if successor is None:
            return None

        successor = store.create_reminder(successor)
        logger.info(
            f"Scheduled next recurring {successor.channel.value} reminder for client "
            f"{successor.client_id} at {successor.scheduled_at.isoformat()}",
            extra={
                "reminder_id": str(successor.id),
                "parent_reminder_id": str(reminder.id),
                "sequence": successor.meta.get("recurringSequence"),
            },
        )
        return successor
