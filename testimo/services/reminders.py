"""Reminder lifecycle service.

This module is the surface the rest of the application calls into:
1. Create, update, delete and list reminders
2. Send one reminder now (manual send, surfaces delivery errors)
3. React to a client finishing work (immediate email + policy schedule)
4. Cancel a client's pending reminders once their testimonial arrives

Dispatch itself is shared with the scheduler through ReminderDispatcher,
so manual and automated sends record outcomes the same way.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlmodel import Session

from testimo.channels import build_channels
from testimo.channels.base import NotificationChannel, SendError
from testimo.config import get_settings
from testimo.models.client import Client, WorkStatus
from testimo.models.project import Project
from testimo.models.reminder import (
    DISPATCHABLE_STATUSES,
    CancelReason,
    Canceled,
    Reminder,
    ReminderChannel,
    ReminderOutcome,
    ReminderStatus,
)
from testimo.services.dispatch import ReminderDispatcher
from testimo.services.errors import (
    ClientNotFound,
    InvalidTransition,
    ProjectNotFound,
    RecipientOptedOut,
    ReminderNotFound,
)
from testimo.services.recurrence import RecurrencePlanner
from testimo.services.store import ClientStore, ProjectStore, SQLReminderStore

logger = logging.getLogger(__name__)

# Status changes a partial update may request
ALLOWED_UPDATE_TRANSITIONS: dict[ReminderStatus, frozenset[ReminderStatus]] = {
    ReminderStatus.PENDING: frozenset({ReminderStatus.CANCELED}),
}


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to the naive UTC form stored in the database."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class CompletionResult:
    """What a client status change triggered.

    Attributes:
        client: The updated client
        triggered: True if this was a transition into ``completed``
        skipped_reason: Why nothing was scheduled, if so
        immediate_reminder: The reminder sent right away
        immediate_error: Delivery error of the immediate send, if any
        scheduled: Pending reminders created from the project policy
    """

    client: Client
    triggered: bool = False
    skipped_reason: str | None = None
    immediate_reminder: Reminder | None = None
    immediate_error: SendError | None = None
    scheduled: list[Reminder] = field(default_factory=list)


class ReminderService:
    """Service for managing testimonial reminders.

    Channels are injected; by default they are built from settings.
    Every method takes the caller's session and commits its own writes.
    """

    def __init__(
        self,
        channels: Mapping[ReminderChannel, NotificationChannel] | None = None,
        base_url: str | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        planner: RecurrencePlanner | None = None,
        dispatcher: ReminderDispatcher | None = None,
    ) -> None:
        self.clock = clock
        self.planner = planner or RecurrencePlanner(clock=clock)
        self.dispatcher = dispatcher or ReminderDispatcher(
            channels if channels is not None else build_channels(),
            base_url=base_url or get_settings().APP_BASE_URL,
            planner=self.planner,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def create_reminder(
        self,
        session: Session,
        project_id: UUID,
        client_id: UUID,
        channel: ReminderChannel,
        scheduled_at: datetime,
        template_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Reminder:
        """Create a pending reminder.

        Raises:
            ProjectNotFound: If the project does not exist
            ClientNotFound: If the client does not exist or belongs elsewhere
            RecipientOptedOut: If the client opted out of reminders
        """
        if ProjectStore(session).get(project_id) is None:
            raise ProjectNotFound(project_id)

        client = ClientStore(session).get(client_id)
        if client is None or client.project_id != project_id:
            raise ClientNotFound(client_id)
        if client.reminder_opt_out:
            raise RecipientOptedOut(client_id)

        reminder = Reminder(
            project_id=project_id,
            client_id=client_id,
            channel=channel,
            template_key=template_key,
            scheduled_at=to_naive_utc(scheduled_at),
            status=ReminderStatus.PENDING,
            meta=dict(metadata or {}),
        )
        return SQLReminderStore(session).create_reminder(reminder)

    def get_reminder(self, session: Session, reminder_id: UUID) -> Reminder:
        reminder = SQLReminderStore(session).get_reminder(reminder_id)
        if reminder is None:
            raise ReminderNotFound(reminder_id)
        return reminder

    def update_reminder(
        self,
        session: Session,
        reminder_id: UUID,
        partial: dict[str, Any],
    ) -> Reminder:
        """Apply a partial update.

        Only ``pending -> canceled`` may be requested as a status change;
        terminal reminders keep their status. The write is conditional on
        the status read here.

        Raises:
            ReminderNotFound: If the reminder does not exist
            InvalidTransition: If the status change is not allowed
        """
        store = SQLReminderStore(session)
        reminder = self.get_reminder(session, reminder_id)
        current = reminder.status
        changes = dict(partial)
        # Both columns are NOT NULL; null means "leave as is"
        for key in ("status", "scheduled_at"):
            if key in changes and changes[key] is None:
                del changes[key]

        if "scheduled_at" in changes:
            changes["scheduled_at"] = to_naive_utc(changes["scheduled_at"])

        requested = changes.get("status")
        if requested is not None:
            requested = ReminderStatus(requested)
            changes["status"] = requested
            if requested == current:
                del changes["status"]
            elif requested not in ALLOWED_UPDATE_TRANSITIONS.get(current, frozenset()):
                raise InvalidTransition(current.value, requested.value)
            elif requested == ReminderStatus.CANCELED:
                canceled = Canceled(at=self.clock(), reason=CancelReason.USER_CANCELED.value)
                changes["metadata"] = {**canceled.to_metadata(), **(changes.get("metadata") or {})}

        if not changes:
            return reminder

        updated = store.update_reminder(reminder_id, changes, expected_status=current)
        if updated is None:
            latest = self.get_reminder(session, reminder_id)
            raise InvalidTransition(latest.status.value, requested.value if requested else None)
        return updated

    def delete_reminder(self, session: Session, reminder_id: UUID) -> None:
        if not SQLReminderStore(session).delete_reminder(reminder_id):
            raise ReminderNotFound(reminder_id)
        logger.info("Reminder deleted", extra={"reminder_id": str(reminder_id)})

    def list_pending_reminders(self, session: Session, project_id: UUID) -> list[Reminder]:
        """Pending reminders of a project, soonest first."""
        if ProjectStore(session).get(project_id) is None:
            raise ProjectNotFound(project_id)
        return SQLReminderStore(session).pending_reminders_for_project(project_id)

    # -------------------------------------------------------------------------
    # Manual send
    # -------------------------------------------------------------------------

    def send_now(self, session: Session, reminder_id: UUID) -> ReminderOutcome:
        """Send one reminder immediately.

        Allowed from ``pending`` and ``failed``. The outcome is recorded
        before any error is raised, and recurrence continues on success.

        Raises:
            ReminderNotFound: If the reminder does not exist
            InvalidTransition: If the reminder was already sent or canceled
            ClientNotFound: If its client is gone (recorded as failed)
            ProjectNotFound: If its project is gone (recorded as failed)
            RecipientOptedOut: If the client opted out (pending reminder is canceled)
            SendError: If the channel could not deliver (recorded as failed)
        """
        store = SQLReminderStore(session)
        reminder = self.get_reminder(session, reminder_id)
        current = reminder.status

        if current not in DISPATCHABLE_STATUSES:
            raise InvalidTransition(current.value)

        client = ClientStore(session).get(reminder.client_id)
        if client is None:
            self.dispatcher.record_failure(
                store, reminder, "Client not found", ClientNotFound.kind,
                expected=current, automated=False,
            )
            raise ClientNotFound(reminder.client_id)

        if client.reminder_opt_out:
            if current == ReminderStatus.PENDING:
                self.dispatcher.cancel(store, reminder, CancelReason.CLIENT_OPTED_OUT.value)
            raise RecipientOptedOut(client.id)

        project = ProjectStore(session).get(reminder.project_id)
        if project is None:
            self.dispatcher.record_failure(
                store, reminder, "Project not found", ProjectNotFound.kind,
                expected=current, automated=False,
            )
            raise ProjectNotFound(reminder.project_id)

        result = self.dispatcher.dispatch(store, reminder, client, project, automated=False)
        if not result.recorded:
            latest = self.get_reminder(session, reminder_id)
            raise InvalidTransition(latest.status.value)
        if result.error is not None:
            raise result.error

        client.is_contacted = True
        client.last_contacted_at = self.clock()
        ClientStore(session).save(client)

        self.dispatcher.continue_recurrence(store, reminder, project)

        logger.info(
            f"Reminder {reminder.id} sent manually to {client.email}",
            extra={"reminder_id": str(reminder.id), "channel": reminder.channel.value},
        )
        return result.outcome

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    def cancel_pending_for_client(self, session: Session, client: Client, reason: str) -> int:
        """Cancel every pending reminder of a client. Returns how many were canceled."""
        store = SQLReminderStore(session)
        canceled = 0
        for reminder in store.pending_reminders_for_client(client.id):
            if self.dispatcher.cancel(store, reminder, reason):
                canceled += 1

        if canceled:
            logger.info(
                f"Canceled {canceled} pending reminders for {client.email}",
                extra={"client_id": str(client.id), "count": canceled, "reason": reason},
            )
        return canceled

    def handle_testimonial_received(
        self,
        session: Session,
        project_id: UUID,
        client_email: str,
    ) -> int:
        """Cancel the pending reminders of the client who just left a testimonial."""
        client = ClientStore(session).find_by_project_and_email(project_id, client_email)
        if client is None:
            logger.info(
                "Testimonial received from unknown client, nothing to cancel",
                extra={"project_id": str(project_id)},
            )
            return 0
        return self.cancel_pending_for_client(
            session, client, CancelReason.TESTIMONIAL_RECEIVED.value
        )

    def schedule_from_policy(
        self,
        session: Session,
        project: Project,
        client: Client,
        now: datetime | None = None,
    ) -> list[Reminder]:
        """Create one pending reminder per schedule rule of an enabled policy.

        Unparseable reminder settings schedule nothing.
        """
        try:
            policy = project.reminder_policy
        except ValidationError as e:
            logger.error(
                f"Invalid reminder settings on project {project.id}, no follow-ups scheduled",
                extra={"project_id": str(project.id), "client_id": str(client.id), "error": str(e)},
            )
            return []
        if not policy.enabled:
            return []

        store = SQLReminderStore(session)
        created = []
        for scheduled_at in self.planner.schedule_times(policy, now or self.clock()):
            created.append(
                store.create_reminder(
                    Reminder(
                        project_id=project.id,
                        client_id=client.id,
                        channel=policy.default_channel,
                        scheduled_at=scheduled_at,
                        status=ReminderStatus.PENDING,
                        meta={"automatic": True},
                    )
                )
            )
        return created

    def handle_client_status_change(
        self,
        session: Session,
        client_id: UUID,
        work_status: WorkStatus,
        now: datetime | None = None,
    ) -> CompletionResult:
        """Save a client's work status and react to completion.

        Moving into ``completed`` sends an email right away and schedules
        the project's follow-ups. A failed immediate send is recorded and
        does not stop the follow-ups. Opted-out clients get neither.

        Raises:
            ClientNotFound: If the client does not exist
        """
        clients = ClientStore(session)
        client = clients.get(client_id)
        if client is None:
            raise ClientNotFound(client_id)

        previous = client.work_status
        client.work_status = WorkStatus(work_status)
        client = clients.save(client)
        result = CompletionResult(client=client)

        if client.work_status != WorkStatus.COMPLETED or previous == WorkStatus.COMPLETED:
            return result

        result.triggered = True
        if client.reminder_opt_out:
            result.skipped_reason = RecipientOptedOut.kind
            logger.info(
                f"Client {client.email} completed but opted out, no reminders scheduled",
                extra={"client_id": str(client.id)},
            )
            return result

        project = ProjectStore(session).get(client.project_id)
        if project is None:
            raise ProjectNotFound(client.project_id)

        now = now or self.clock()
        immediate = Reminder(
            project_id=project.id,
            client_id=client.id,
            channel=ReminderChannel.EMAIL,
            scheduled_at=now,
            status=ReminderStatus.PENDING,
            meta={"automatic": True, "immediate": True},
        )
        # Stored only once its outcome is known, so no tick ever sees it pending
        outcome, error = self.dispatcher.attempt(immediate, client, project, automated=True)
        immediate.status = outcome.status
        immediate.attempt_number = 1
        immediate.meta = {**immediate.meta, **outcome.to_metadata()}
        result.immediate_reminder = SQLReminderStore(session).create_reminder(immediate)

        if error is not None:
            result.immediate_error = error
            logger.warning(
                f"Immediate reminder to {client.email} failed",
                extra={"reminder_id": str(immediate.id), "error_kind": error.kind.value, "error": error.message},
            )
        else:
            client.is_contacted = True
            client.last_contacted_at = self.clock()
            client = clients.save(client)

        result.scheduled = self.schedule_from_policy(session, project, client, now)
        logger.info(
            f"Client {client.email} completed work, scheduled {len(result.scheduled)} follow-ups",
            extra={"client_id": str(client.id), "project_id": str(project.id)},
        )
        return result


# -----------------------------------------------------------------------------
# Singleton Service Instance
# -----------------------------------------------------------------------------

_service_instance: ReminderService | None = None


def get_reminder_service() -> ReminderService:
    """Get or create the reminder service singleton.

    Returns:
        ReminderService: The singleton service instance
    """
    global _service_instance
    if _service_instance is None:
        _service_instance = ReminderService()
    return _service_instance
