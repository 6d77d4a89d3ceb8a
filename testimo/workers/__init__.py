"""Background workers for the reminder engine.

Workers can be started via:
- run_scheduler_once(): Single tick
- run_scheduler_loop(): Continuous ticks on a fixed interval
"""

from testimo.workers.base import (
    ItemOutcome,
    WorkerBase,
    WorkerResult,
    WorkerStatus,
)
from testimo.workers.reminder_scheduler import ReminderScheduler
from testimo.workers.runner import (
    RunnerResult,
    SchedulerRunner,
    configure_worker_logging,
    run_scheduler_loop,
    run_scheduler_once,
)

__all__ = [
    # Base classes
    "WorkerBase",
    "WorkerResult",
    "WorkerStatus",
    "ItemOutcome",
    # Scheduler
    "ReminderScheduler",
    # Runner
    "SchedulerRunner",
    "RunnerResult",
    "run_scheduler_once",
    "run_scheduler_loop",
    "configure_worker_logging",
]
