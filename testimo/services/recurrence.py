"""Recurrence planning for testimonial reminders.

Recurring reminders drift forward from the moment they were actually
sent, not from their original schedule: the next occurrence is
``now + interval`` with the time of day forced to the project's send
time. Quiet hours, cooldown and max attempts are not consulted.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any

from testimo.models.project import ReminderPolicy, parse_send_time
from testimo.models.reminder import (
    OUTCOME_METADATA_KEYS,
    RecurrenceInfo,
    RecurringInterval,
    Reminder,
    ReminderStatus,
)

logger = logging.getLogger(__name__)

INTERVAL_DAYS = {
    RecurringInterval.DAILY.value: 1,
    RecurringInterval.ALTERNATE_DAYS.value: 2,
    RecurringInterval.WEEKLY.value: 7,
}

# Used when the stored interval is not one we know
DEFAULT_INTERVAL_DAYS = 3


def at_send_time(base: datetime, days: int, send_time: str, tz: tzinfo) -> datetime:
    """Return ``base + days`` at ``send_time`` in ``tz``, as naive UTC.

    Args:
        base: Naive UTC starting instant
        days: Calendar days to add in the project's timezone
        send_time: "HH:MM" wall-clock time
        tz: Project timezone
    """
    hour, minute = parse_send_time(send_time)
    local = base.replace(tzinfo=timezone.utc).astimezone(tz)
    local = (local + timedelta(days=days)).replace(
        hour=hour, minute=minute, second=0, microsecond=0
    )
    return local.astimezone(timezone.utc).replace(tzinfo=None)


class RecurrencePlanner:
    """Computes successors for recurring reminders."""

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow) -> None:
        self._clock = clock

    def interval_days(self, interval: str) -> int:
        return INTERVAL_DAYS.get(interval, DEFAULT_INTERVAL_DAYS)

    def next_occurrence(
        self,
        reminder: Reminder,
        policy: ReminderPolicy,
        now: datetime | None = None,
    ) -> datetime | None:
        """Next scheduled instant for a recurring reminder, or None."""
        info = reminder.recurrence
        if not info.recurring or not info.interval:
            return None

        return at_send_time(
            now or self._clock(),
            self.interval_days(info.interval),
            policy.send_time,
            policy.tzinfo,
        )

    def build_successor(
        self,
        reminder: Reminder,
        policy: ReminderPolicy,
        now: datetime | None = None,
    ) -> Reminder | None:
        """Create (unsaved) the next pending reminder of a recurring chain."""
        scheduled_at = self.next_occurrence(reminder, policy, now)
        if scheduled_at is None:
            return None

        info = reminder.recurrence
        carried: dict[str, Any] = {
            key: value
            for key, value in (reminder.meta or {}).items()
            if key not in OUTCOME_METADATA_KEYS
        }
        carried.update(
            RecurrenceInfo(
                recurring=True,
                interval=info.interval,
                sequence=info.sequence + 1,
                parent_reminder_id=str(reminder.id),
            ).to_metadata()
        )

        return Reminder(
            project_id=reminder.project_id,
            client_id=reminder.client_id,
            channel=reminder.channel,
            template_key=reminder.template_key,
            scheduled_at=scheduled_at,
            status=ReminderStatus.PENDING,
            attempt_number=0,
            meta=carried,
        )

    def schedule_times(self, policy: ReminderPolicy, now: datetime | None = None) -> list[datetime]:
        """One instant per policy rule: ``now + offsetDays`` at ``sendTime``."""
        base = now or self._clock()
        return [
            at_send_time(base, rule.offset_days, rule.send_time, policy.tzinfo)
            for rule in policy.schedule
        ]
