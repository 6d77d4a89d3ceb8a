"""Tests for the reminder lifecycle service.

Tests cover:
- Reminder creation rules
- Manual send-now, including retrying a failed reminder
- Partial updates and terminal states
- Cancellation when a testimonial is received
- The completion trigger end to end
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlmodel import Session, select

from testimo.channels.base import InvalidRecipient, ProviderRejected
from testimo.models.client import Client, WorkStatus
from testimo.models.reminder import Reminder, ReminderChannel, ReminderStatus, Sent
from testimo.services.errors import (
    ClientNotFound,
    InvalidTransition,
    ProjectNotFound,
    RecipientOptedOut,
    ReminderNotFound,
)
from testimo.services.reminders import ReminderService
from testimo.workers.base import WorkerStatus
from testimo.workers.reminder_scheduler import ReminderScheduler


NOW = datetime(2024, 1, 1, 10, 0, 0)
BASE_URL = "https://testimo.example"


@pytest.fixture
def service(channels) -> ReminderService:
    return ReminderService(channels, base_url=BASE_URL, clock=lambda: NOW)


def _reload(session: Session, reminder: Reminder) -> Reminder:
    session.expire_all()
    return session.get(Reminder, reminder.id)


def _reminders_for(session: Session, client: Client) -> list[Reminder]:
    session.expire_all()
    return list(
        session.exec(
            select(Reminder).where(Reminder.client_id == client.id).order_by(Reminder.scheduled_at)
        ).all()
    )


# ============================================================================
# create_reminder Tests
# ============================================================================

class TestCreateReminder:
    """Tests for ReminderService.create_reminder."""

    def test_creates_pending_reminder(self, db_session, service, make_project, make_client):
        """A new reminder starts pending with no attempts."""
        project = make_project()
        client = make_client(project)

        reminder = service.create_reminder(
            db_session,
            project.id,
            client.id,
            ReminderChannel.SMS,
            datetime(2024, 1, 5, 9, 0),
            template_key="nudge",
            metadata={"recurring": True, "recurringInterval": "weekly"},
        )

        assert reminder.status == ReminderStatus.PENDING
        assert reminder.attempt_number == 0
        assert reminder.channel == ReminderChannel.SMS
        assert reminder.template_key == "nudge"
        assert reminder.meta == {"recurring": True, "recurringInterval": "weekly"}

    def test_aware_time_stored_as_naive_utc(self, db_session, service, make_project, make_client):
        """Timezone-aware input is normalized to naive UTC."""
        project = make_project()
        client = make_client(project)
        scheduled = datetime(2024, 1, 5, 9, 0, tzinfo=timezone(timedelta(hours=2)))

        reminder = service.create_reminder(
            db_session, project.id, client.id, ReminderChannel.EMAIL, scheduled
        )

        assert reminder.scheduled_at == datetime(2024, 1, 5, 7, 0)

    def test_rejects_opted_out_client(self, db_session, service, make_project, make_client):
        """Opted-out clients cannot be scheduled."""
        project = make_project()
        client = make_client(project, reminder_opt_out=True)

        with pytest.raises(RecipientOptedOut):
            service.create_reminder(db_session, project.id, client.id, ReminderChannel.EMAIL, NOW)

    def test_rejects_unknown_project(self, db_session, service, make_project, make_client):
        """The project must exist."""
        client = make_client(make_project())

        with pytest.raises(ProjectNotFound):
            service.create_reminder(db_session, uuid4(), client.id, ReminderChannel.EMAIL, NOW)

    def test_rejects_client_of_other_project(self, db_session, service, make_project, make_client):
        """The client must belong to the project."""
        project = make_project()
        other = make_project(name="Other")
        client = make_client(other)

        with pytest.raises(ClientNotFound):
            service.create_reminder(db_session, project.id, client.id, ReminderChannel.EMAIL, NOW)


# ============================================================================
# send_now Tests
# ============================================================================

class TestSendNow:
    """Tests for ReminderService.send_now."""

    def test_sends_and_records_manual_attempt(
        self, db_session, service, email_channel, make_project, make_client, make_reminder
    ):
        """A manual send is recorded with automated=false and marks the client contacted."""
        project = make_project()
        client = make_client(project)
        reminder = make_reminder(client, scheduled_at=NOW + timedelta(days=2))

        outcome = service.send_now(db_session, reminder.id)

        assert isinstance(outcome, Sent)
        assert len(email_channel.sent) == 1
        reminder = _reload(db_session, reminder)
        assert reminder.status == ReminderStatus.SENT
        assert reminder.attempt_number == 1
        assert reminder.meta["automated"] is False
        client = db_session.get(Client, client.id)
        assert client.is_contacted is True
        assert client.last_contacted_at == NOW

    def test_surfaces_send_error_after_recording(
        self, db_session, make_channel, make_project, make_client, make_reminder
    ):
        """The delivery error is raised to the caller and stored on the reminder."""
        error = ProviderRejected("SMS provider rejected message: blocked", provider_code="21408")
        service = ReminderService(
            {ReminderChannel.SMS: make_channel(ReminderChannel.SMS, error=error)},
            base_url=BASE_URL,
            clock=lambda: NOW,
        )
        project = make_project()
        client = make_client(project)
        reminder = make_reminder(client, channel=ReminderChannel.SMS)

        with pytest.raises(ProviderRejected) as exc_info:
            service.send_now(db_session, reminder.id)

        assert exc_info.value is error
        reminder = _reload(db_session, reminder)
        assert reminder.status == ReminderStatus.FAILED
        assert reminder.attempt_number == 1
        assert reminder.meta["errorKind"] == "provider_rejected"
        assert reminder.meta["providerCode"] == "21408"
        assert reminder.meta["automated"] is False

    def test_sms_without_phone_raises_invalid_recipient(
        self, db_session, service, sms_channel, make_project, make_client, make_reminder
    ):
        """Manual SMS to a client without a phone fails with InvalidRecipient."""
        project = make_project()
        client = make_client(project, phone=None)
        reminder = make_reminder(client, channel=ReminderChannel.SMS)

        with pytest.raises(InvalidRecipient):
            service.send_now(db_session, reminder.id)

        assert sms_channel.sent == []
        assert _reload(db_session, reminder).status == ReminderStatus.FAILED

    def test_retries_failed_reminder(
        self, db_session, service, email_channel, make_project, make_client, make_reminder
    ):
        """A failed reminder may be sent again manually."""
        project = make_project()
        client = make_client(project)
        reminder = make_reminder(
            client,
            status=ReminderStatus.FAILED,
            attempt_number=1,
            meta={"failedAt": "2023-12-31T09:00:00", "error": "timeout"},
        )

        service.send_now(db_session, reminder.id)

        reminder = _reload(db_session, reminder)
        assert reminder.status == ReminderStatus.SENT
        assert reminder.attempt_number == 2
        assert reminder.meta["sentAt"] == NOW.isoformat()
        assert len(email_channel.sent) == 1

    @pytest.mark.parametrize("status", [ReminderStatus.SENT, ReminderStatus.CANCELED])
    def test_terminal_reminder_cannot_be_sent(
        self, db_session, service, email_channel, make_project, make_client, make_reminder, status
    ):
        """Sent and canceled reminders are never dispatched again."""
        project = make_project()
        reminder = make_reminder(make_client(project), status=status)

        with pytest.raises(InvalidTransition):
            service.send_now(db_session, reminder.id)

        assert email_channel.sent == []

    def test_opted_out_client_cancels(
        self, db_session, service, email_channel, make_project, make_client, make_reminder
    ):
        """Sending to an opted-out client raises and cancels the pending reminder."""
        project = make_project()
        client = make_client(project, reminder_opt_out=True)
        reminder = make_reminder(client)

        with pytest.raises(RecipientOptedOut):
            service.send_now(db_session, reminder.id)

        assert email_channel.sent == []
        reminder = _reload(db_session, reminder)
        assert reminder.status == ReminderStatus.CANCELED
        assert reminder.meta["cancelReason"] == "client_opted_out"

    def test_missing_reminder(self, db_session, service):
        """Unknown reminder IDs raise ReminderNotFound."""
        with pytest.raises(ReminderNotFound):
            service.send_now(db_session, uuid4())

    def test_continues_recurrence(
        self, db_session, service, make_project, make_client, make_reminder
    ):
        """A successful manual send continues a recurring chain."""
        project = make_project()
        client = make_client(project)
        reminder = make_reminder(client, meta={"recurring": True, "recurringInterval": "daily"})

        service.send_now(db_session, reminder.id)

        reminders = _reminders_for(db_session, client)
        assert len(reminders) == 2
        assert reminders[1].status == ReminderStatus.PENDING
        assert reminders[1].scheduled_at == datetime(2024, 1, 2, 9, 0)

    @pytest.mark.parametrize("recurring", [True, False])
    def test_invalid_project_settings_do_not_fail_a_sent_reminder(
        self, db_session, service, email_channel, make_project, make_client, make_reminder, recurring
    ):
        """Unparseable reminder settings end the chain; the send still succeeds."""
        project = make_project(reminder_settings={"schedule": [{"sendTime": "9am"}]})
        client = make_client(project)
        meta = {"recurring": True, "recurringInterval": "daily"} if recurring else {}
        reminder = make_reminder(client, meta=meta)

        outcome = service.send_now(db_session, reminder.id)

        assert isinstance(outcome, Sent)
        assert len(email_channel.sent) == 1
        reminders = _reminders_for(db_session, client)
        assert [r.status for r in reminders] == [ReminderStatus.SENT]


# ============================================================================
# update / delete / list Tests
# ============================================================================

class TestUpdateReminder:
    """Tests for partial updates."""

    def test_reschedule_and_annotate(self, db_session, service, make_project, make_client, make_reminder):
        """Pending reminders can be rescheduled; metadata is merged."""
        project = make_project()
        reminder = make_reminder(make_client(project), meta={"automatic": True})

        updated = service.update_reminder(
            db_session,
            reminder.id,
            {"scheduled_at": datetime(2024, 2, 1, 9, 0), "metadata": {"note": "after holidays"}},
        )

        assert updated.scheduled_at == datetime(2024, 2, 1, 9, 0)
        assert updated.meta == {"automatic": True, "note": "after holidays"}

    def test_cancel_pending(self, db_session, service, make_project, make_client, make_reminder):
        """Cancelling through an update records the user as the reason."""
        project = make_project()
        reminder = make_reminder(make_client(project))

        updated = service.update_reminder(db_session, reminder.id, {"status": "canceled"})

        assert updated.status == ReminderStatus.CANCELED
        assert updated.meta["cancelReason"] == "user_canceled"
        assert updated.meta["canceledAt"] == NOW.isoformat()

    @pytest.mark.parametrize(
        "current,requested",
        [
            (ReminderStatus.SENT, ReminderStatus.PENDING),
            (ReminderStatus.SENT, ReminderStatus.CANCELED),
            (ReminderStatus.CANCELED, ReminderStatus.PENDING),
            (ReminderStatus.PENDING, ReminderStatus.SENT),
            (ReminderStatus.FAILED, ReminderStatus.PENDING),
        ],
    )
    def test_refuses_invalid_status_changes(
        self, db_session, service, make_project, make_client, make_reminder, current, requested
    ):
        """Terminal states stay terminal and outcomes cannot be forged."""
        project = make_project()
        reminder = make_reminder(make_client(project), status=current)

        with pytest.raises(InvalidTransition):
            service.update_reminder(db_session, reminder.id, {"status": requested})

        assert _reload(db_session, reminder).status == current

    def test_same_status_is_a_no_op(self, db_session, service, make_project, make_client, make_reminder):
        """Re-stating the current status is accepted."""
        project = make_project()
        reminder = make_reminder(make_client(project), status=ReminderStatus.SENT)

        updated = service.update_reminder(db_session, reminder.id, {"status": ReminderStatus.SENT})

        assert updated.status == ReminderStatus.SENT

    def test_null_status_and_time_leave_them_unchanged(
        self, db_session, service, make_project, make_client, make_reminder
    ):
        """Explicit nulls for required columns are ignored, other fields still apply."""
        project = make_project()
        reminder = make_reminder(make_client(project))

        updated = service.update_reminder(
            db_session,
            reminder.id,
            {"status": None, "scheduled_at": None, "template_key": "gentle_nudge"},
        )

        assert updated.status == ReminderStatus.PENDING
        assert updated.scheduled_at == datetime(2024, 1, 1, 9, 0)
        assert updated.template_key == "gentle_nudge"

    def test_delete_and_list(self, db_session, service, make_project, make_client, make_reminder):
        """Deleted reminders disappear; listing shows only pending ones, soonest first."""
        project = make_project()
        client = make_client(project)
        later = make_reminder(client, scheduled_at=datetime(2024, 1, 9, 9, 0))
        sooner = make_reminder(client, scheduled_at=datetime(2024, 1, 3, 9, 0))
        doomed = make_reminder(client, scheduled_at=datetime(2024, 1, 4, 9, 0))
        make_reminder(client, status=ReminderStatus.SENT)

        service.delete_reminder(db_session, doomed.id)
        pending = service.list_pending_reminders(db_session, project.id)

        assert [r.id for r in pending] == [sooner.id, later.id]
        with pytest.raises(ReminderNotFound):
            service.delete_reminder(db_session, doomed.id)


# ============================================================================
# Trigger Tests
# ============================================================================

class TestTestimonialReceived:
    """Tests for cancellation on testimonial receipt."""

    def test_cancels_only_that_clients_pending_reminders(
        self, db_session, service, make_project, make_client, make_reminder
    ):
        """Three pending reminders for C are canceled; D's stays pending."""
        project = make_project()
        carol = make_client(project)
        dave = make_client(project, name="Dave", email="dave@example.com")
        carols = [
            make_reminder(carol, scheduled_at=NOW + timedelta(days=days)) for days in (1, 2, 3)
        ]
        already_sent = make_reminder(carol, status=ReminderStatus.SENT)
        daves = make_reminder(dave)

        canceled = service.handle_testimonial_received(db_session, project.id, "carol@example.com")

        assert canceled == 3
        for reminder in carols:
            reminder = _reload(db_session, reminder)
            assert reminder.status == ReminderStatus.CANCELED
            assert reminder.meta["cancelReason"] == "testimonial_received"
        assert _reload(db_session, already_sent).status == ReminderStatus.SENT
        assert _reload(db_session, daves).status == ReminderStatus.PENDING

    def test_unknown_client(self, db_session, service, make_project):
        """A testimonial from someone who is not a client cancels nothing."""
        project = make_project()

        assert service.handle_testimonial_received(db_session, project.id, "stranger@example.com") == 0


class TestClientCompletion:
    """Tests for the completion trigger."""

    def test_end_to_end_completion(
        self, db_session, service, email_channel, make_project, make_client
    ):
        """Completing work sends one email now and schedules the policy follow-up."""
        project = make_project(
            reminder_settings={
                "enabled": True,
                "channels": ["email"],
                "schedule": [{"offsetDays": 3, "sendTime": "09:00"}],
                "timezone": "UTC",
            }
        )
        client = make_client(project)

        result = service.handle_client_status_change(
            db_session, client.id, WorkStatus.COMPLETED, now=datetime(2024, 1, 1, 10, 0, 0)
        )

        assert result.triggered is True
        assert result.immediate_error is None
        assert len(email_channel.sent) == 1

        reminders = _reminders_for(db_session, client)
        assert len(reminders) == 2
        immediate, follow_up = reminders
        assert immediate.status == ReminderStatus.SENT
        assert immediate.channel == ReminderChannel.EMAIL
        assert immediate.meta["automatic"] is True
        assert immediate.meta["immediate"] is True
        assert follow_up.status == ReminderStatus.PENDING
        assert follow_up.scheduled_at == datetime(2024, 1, 4, 9, 0)
        assert follow_up.meta == {"automatic": True}
        assert [r.id for r in result.scheduled] == [follow_up.id]

        client = db_session.get(Client, client.id)
        assert client.work_status == WorkStatus.COMPLETED
        assert client.is_contacted is True

    def test_policy_channel_used_for_follow_ups(
        self, db_session, service, make_project, make_client
    ):
        """Follow-ups use the policy's first channel; the immediate send is always email."""
        project = make_project(
            reminder_settings={"enabled": True, "channels": ["sms", "email"]}
        )
        client = make_client(project)

        result = service.handle_client_status_change(db_session, client.id, WorkStatus.COMPLETED)

        assert result.immediate_reminder.channel == ReminderChannel.EMAIL
        assert [r.channel for r in result.scheduled] == [ReminderChannel.SMS]

    def test_disabled_policy_only_sends_immediately(
        self, db_session, service, email_channel, make_project, make_client
    ):
        """Without an enabled policy only the immediate email goes out."""
        project = make_project()
        client = make_client(project)

        result = service.handle_client_status_change(db_session, client.id, WorkStatus.COMPLETED)

        assert result.scheduled == []
        assert len(email_channel.sent) == 1

    def test_immediate_failure_does_not_stop_follow_ups(
        self, db_session, make_channel, make_project, make_client
    ):
        """A failed immediate send is recorded and follow-ups are still scheduled."""
        error = ProviderRejected("Email provider rejected message: blocked")
        service = ReminderService(
            {ReminderChannel.EMAIL: make_channel(error=error)}, base_url=BASE_URL, clock=lambda: NOW
        )
        project = make_project(reminder_settings={"enabled": True})
        client = make_client(project)

        result = service.handle_client_status_change(db_session, client.id, WorkStatus.COMPLETED)

        assert result.immediate_error is error
        assert result.immediate_reminder.status == ReminderStatus.FAILED
        assert result.immediate_reminder.attempt_number == 1
        assert result.immediate_reminder.meta["errorKind"] == "provider_rejected"
        assert len(result.scheduled) == 1
        assert db_session.get(Client, client.id).is_contacted is False

    def test_tick_during_immediate_send_does_not_send_it_again(
        self, db_session, make_channel, make_project, make_client
    ):
        """A scheduler tick running mid-send finds no due reminder; follow-ups still follow."""
        tick_results = []
        channel = make_channel(on_send=lambda client, message: tick_results.append(
            ReminderScheduler(
                {ReminderChannel.EMAIL: channel}, base_url=BASE_URL, batch_size=10, clock=lambda: NOW
            ).run(db_session)
        ))
        service = ReminderService(
            {ReminderChannel.EMAIL: channel}, base_url=BASE_URL, clock=lambda: NOW
        )
        project = make_project(reminder_settings={"enabled": True})
        client = make_client(project)

        result = service.handle_client_status_change(db_session, client.id, WorkStatus.COMPLETED)

        assert [r.status for r in tick_results] == [WorkerStatus.NO_WORK]
        assert len(channel.sent) == 1
        assert result.immediate_error is None
        assert result.immediate_reminder.status == ReminderStatus.SENT
        assert len(result.scheduled) == 1
        reminders = _reminders_for(db_session, client)
        assert [r.status for r in reminders] == [ReminderStatus.SENT, ReminderStatus.PENDING]

    def test_invalid_project_settings_skip_follow_ups(
        self, db_session, service, email_channel, make_project, make_client
    ):
        """Unparseable reminder settings still let the immediate email go out."""
        project = make_project(reminder_settings={"enabled": True, "schedule": [{"sendTime": "9am"}]})
        client = make_client(project)

        result = service.handle_client_status_change(db_session, client.id, WorkStatus.COMPLETED)

        assert result.immediate_reminder.status == ReminderStatus.SENT
        assert result.scheduled == []
        assert len(email_channel.sent) == 1

    def test_opted_out_client_gets_nothing(
        self, db_session, service, email_channel, make_project, make_client
    ):
        """An opted-out client is neither emailed nor scheduled."""
        project = make_project(reminder_settings={"enabled": True})
        client = make_client(project, reminder_opt_out=True)

        result = service.handle_client_status_change(db_session, client.id, WorkStatus.COMPLETED)

        assert result.triggered is True
        assert result.skipped_reason == "client_opted_out"
        assert email_channel.sent == []
        assert _reminders_for(db_session, client) == []

    def test_resaving_completed_client_triggers_nothing(
        self, db_session, service, email_channel, make_project, make_client
    ):
        """Only a transition into completed triggers reminders."""
        project = make_project(reminder_settings={"enabled": True})
        client = make_client(project, work_status=WorkStatus.COMPLETED)

        result = service.handle_client_status_change(db_session, client.id, WorkStatus.COMPLETED)

        assert result.triggered is False
        assert email_channel.sent == []
        assert _reminders_for(db_session, client) == []

    def test_other_transitions_only_save(
        self, db_session, service, email_channel, make_project, make_client
    ):
        """Moving to another status just saves it."""
        project = make_project()
        client = make_client(project, work_status=WorkStatus.NOT_STARTED)

        result = service.handle_client_status_change(db_session, client.id, WorkStatus.IN_PROGRESS)

        assert result.triggered is False
        assert result.client.work_status == WorkStatus.IN_PROGRESS
        assert email_channel.sent == []

    def test_unknown_client(self, db_session, service):
        """Unknown clients raise ClientNotFound."""
        with pytest.raises(ClientNotFound):
            service.handle_client_status_change(db_session, uuid4(), WorkStatus.COMPLETED)
