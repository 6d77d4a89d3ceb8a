"""Scheduler runner for the reminder engine.

Provides easy-to-use entry points for running the scheduler:
- run_scheduler_once(): Single tick
- run_scheduler_loop(): Fixed-interval ticks until stopped

Ticks start on a fixed cadence measured from the start of the previous
tick. A tick that overruns the interval is followed immediately by the
next one; missed ticks are dropped, never queued.
"""

import logging
import signal
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlmodel import Session

from testimo.channels import build_channels
from testimo.channels.base import NotificationChannel
from testimo.config import get_settings
from testimo.db.session import get_engine
from testimo.models.reminder import ReminderChannel
from testimo.workers.base import WorkerResult
from testimo.workers.reminder_scheduler import ReminderScheduler

logger = logging.getLogger(__name__)


@dataclass
class RunnerResult:
    """Result of one runner tick.

    Attributes:
        started_at: When the tick started
        completed_at: When the tick completed
        result: Scheduler result for the tick
        errors: Top-level errors during the tick
    """

    started_at: datetime
    completed_at: datetime | None = None
    result: WorkerResult | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return self.result.processed_count if self.result else 0

    @property
    def total_failed(self) -> int:
        return self.result.failed_count if self.result else 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": (
                (self.completed_at - self.started_at).total_seconds() * 1000
                if self.completed_at
                else None
            ),
            "total_processed": self.total_processed,
            "total_failed": self.total_failed,
            "result": self.result.to_dict() if self.result else None,
            "errors": self.errors,
        }


class SchedulerRunner:
    """Drives a ReminderScheduler on a fixed interval.

    Usage:
        runner = SchedulerRunner()
        result = runner.run_once()
    """

    def __init__(
        self,
        scheduler: ReminderScheduler | None = None,
        channels: Mapping[ReminderChannel, NotificationChannel] | None = None,
        batch_size: int | None = None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            scheduler: Scheduler to drive (default: built from settings)
            channels: Channels for a default scheduler
            batch_size: Override default batch size
            session_factory: Creates a session per tick (default: engine session)
        """
        self.scheduler = scheduler or ReminderScheduler(
            channels if channels is not None else build_channels(),
            batch_size=batch_size,
        )
        self._session_factory = session_factory or (lambda: Session(get_engine()))
        self._logger = logging.getLogger(self.__class__.__name__)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> RunnerResult:
        """Execute one scheduler tick in a fresh session."""
        result = RunnerResult(started_at=datetime.utcnow())

        try:
            with self._session_factory() as session:
                result.result = self.scheduler.run(session)
        except Exception as e:
            error_msg = f"{self.scheduler.worker_name} failed: {str(e)}"
            result.errors.append(error_msg)
            self._logger.error(error_msg, exc_info=True)

        result.completed_at = datetime.utcnow()
        self._logger.debug("Scheduler tick completed", extra=result.to_dict())
        return result

    def run_loop(
        self,
        interval_seconds: int | None = None,
        max_iterations: int | None = None,
        install_signal_handlers: bool = True,
    ) -> int:
        """Run ticks until stopped.

        Args:
            interval_seconds: Seconds between tick starts (default from config)
            max_iterations: Max ticks to run (None for infinite)
            install_signal_handlers: Stop on SIGINT/SIGTERM (main thread only)

        Returns:
            Number of ticks run
        """
        settings = get_settings()
        interval = interval_seconds or settings.REMINDER_POLL_INTERVAL_SECONDS
        iterations = 0

        if install_signal_handlers:
            self._setup_signal_handlers()

        self._logger.info(
            f"Starting automated reminder processor ({interval}-second intervals)",
            extra={"interval_seconds": interval, "max_iterations": max_iterations},
        )

        try:
            while not self._stop_event.is_set():
                if max_iterations is not None and iterations >= max_iterations:
                    self._logger.info(f"Reached max iterations ({max_iterations}), stopping")
                    break

                tick_started = time.monotonic()
                result = self.run_once()
                iterations += 1

                if result.total_processed or result.total_failed:
                    self._logger.info(
                        f"Iteration {iterations} complete",
                        extra={
                            "processed": result.total_processed,
                            "failed": result.total_failed,
                        },
                    )

                if max_iterations is not None and iterations >= max_iterations:
                    continue

                # Ticks compress rather than queue when one overruns
                remaining = interval - (time.monotonic() - tick_started)
                if remaining > 0:
                    self._stop_event.wait(remaining)

        except KeyboardInterrupt:
            self._logger.info("Keyboard interrupt received, shutting down")

        self._logger.info(
            "Stopping automated reminder processor",
            extra={"total_iterations": iterations},
        )
        return iterations

    def start_background(self, interval_seconds: int | None = None) -> threading.Thread:
        """Run the loop on a daemon thread (used by the web app lifespan)."""
        if self._thread is not None and self._thread.is_alive():
            self._logger.info("Processor already started")
            return self._thread

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_loop,
            kwargs={
                "interval_seconds": interval_seconds,
                "install_signal_handlers": False,
            },
            name="reminder-scheduler",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        """Request shutdown and wait for a background loop to finish."""
        self.request_shutdown()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def handle_signal(signum, frame):
            self._logger.info(f"Received signal {signum}, requesting shutdown")
            self.request_shutdown()

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the loop."""
        self._stop_event.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._stop_event.is_set()


# Convenience functions for easy usage


def run_scheduler_once(batch_size: int | None = None) -> RunnerResult:
    """Run one scheduler tick and return results.

    Example:
        >>> from testimo.workers import run_scheduler_once
        >>> result = run_scheduler_once()
        >>> print(f"Sent: {result.total_processed}")
    """
    runner = SchedulerRunner(batch_size=batch_size)
    return runner.run_once()


def run_scheduler_loop(
    interval_seconds: int | None = None,
    max_iterations: int | None = None,
    batch_size: int | None = None,
) -> int:
    """Run the scheduler until interrupted (Ctrl+C) or max_iterations reached."""
    runner = SchedulerRunner(batch_size=batch_size)
    return runner.run_loop(
        interval_seconds=interval_seconds,
        max_iterations=max_iterations,
    )


def configure_worker_logging(level: int = logging.INFO) -> None:
    """Configure logging for worker processes.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Set specific loggers
    logging.getLogger("testimo").setLevel(level)
    logging.getLogger("ReminderScheduler").setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
