"""Base worker abstraction for the reminder engine.

Provides a clean interface for polling workers that:
1. Fetch due work items
2. Process items one at a time, isolating per-item failures
3. Never run two cycles at once (a cycle started while another is in
   progress is skipped, not queued)
4. Report aggregated counts with structured logging
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlmodel import Session

logger = logging.getLogger(__name__)


class WorkerStatus(str, Enum):
    """Status of a worker run."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some items processed, some failed
    FAILED = "failed"
    NO_WORK = "no_work"
    SKIPPED = "skipped"  # Previous cycle still running


class ItemOutcome(str, Enum):
    """What happened to a single work item."""

    PROCESSED = "processed"
    FAILED = "failed"
    CANCELED = "canceled"
    SKIPPED = "skipped"  # Item changed state under us


@dataclass
class WorkerResult:
    """Result of a worker processing cycle.

    Attributes:
        status: Overall status of the worker run
        processed_count: Number of items successfully processed
        failed_count: Number of items that failed
        canceled_count: Number of items withdrawn by policy
        duration_ms: Time taken for the processing cycle
        errors: List of error details for failed items
        metadata: Additional worker-specific metadata
    """

    status: WorkerStatus
    processed_count: int = 0
    failed_count: int = 0
    canceled_count: int = 0
    duration_ms: float = 0.0
    errors: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "status": self.status.value,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "canceled_count": self.canceled_count,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
            "metadata": self.metadata,
        }


# Generic type for work items
T = TypeVar("T")


class WorkerBase(ABC, Generic[T]):
    """Abstract base class for polling workers.

    Workers follow this lifecycle per cycle:
    1. fetch_pending() - Get items to process
    2. process_item() - Do the work and record the result
    3. handle_error() - Record an unexpected failure for one item

    A worker-owned lock guarantees at most one cycle at a time.
    """

    def __init__(self, batch_size: int | None = 100) -> None:
        """Initialize the worker.

        Args:
            batch_size: Maximum items to process per cycle (None for no limit)
        """
        self.batch_size = batch_size
        self._cycle_lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def worker_name(self) -> str:
        """Return the worker name for logging."""
        pass

    @abstractmethod
    def fetch_pending(self, session: Session) -> list[T]:
        """Fetch items to process (up to batch_size)."""
        pass

    @abstractmethod
    def process_item(self, session: Session, item: T) -> ItemOutcome:
        """Process and record a single item.

        Raises:
            Exception: On unexpected failures; the cycle rolls back and
                calls handle_error() before moving on
        """
        pass

    @abstractmethod
    def handle_error(self, session: Session, item: T, error: str) -> None:
        """Record an unexpected failure for an item."""
        pass

    @abstractmethod
    def get_item_id(self, item: T) -> UUID:
        """Get the unique identifier for an item."""
        pass

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    def run(self, session: Session) -> WorkerResult:
        """Execute one processing cycle unless one is already running.

        Args:
            session: Database session

        Returns:
            WorkerResult with processing statistics
        """
        if not self._cycle_lock.acquire(blocking=False):
            self._logger.info(f"[{self.worker_name}] Processing already in progress, skipping")
            return WorkerResult(status=WorkerStatus.SKIPPED)

        try:
            return self._run_cycle(session)
        finally:
            self._cycle_lock.release()

    def _run_cycle(self, session: Session) -> WorkerResult:
        start_time = datetime.utcnow()
        counts = {outcome: 0 for outcome in ItemOutcome}
        errors: list[dict[str, Any]] = []

        self._logger.debug(
            f"[{self.worker_name}] Starting processing cycle",
            extra={"batch_size": self.batch_size},
        )

        try:
            items = self.fetch_pending(session)
        except Exception as e:
            self._logger.error(
                f"[{self.worker_name}] Worker cycle failed",
                extra={"error": str(e)},
                exc_info=True,
            )
            return WorkerResult(
                status=WorkerStatus.FAILED,
                duration_ms=self._elapsed_ms(start_time),
                errors=[{"error": str(e)}],
            )

        if not items:
            self._logger.debug(f"[{self.worker_name}] No pending items")
            return WorkerResult(
                status=WorkerStatus.NO_WORK,
                duration_ms=self._elapsed_ms(start_time),
            )

        self._logger.info(f"[{self.worker_name}] Found {len(items)} items to process")

        for item in items:
            item_id = self.get_item_id(item)

            try:
                outcome = self.process_item(session, item)
            except Exception as e:
                session.rollback()
                outcome = ItemOutcome.FAILED
                error_msg = str(e)[:500]  # Truncate long errors

                self._logger.error(
                    f"[{self.worker_name}] Failed to process item {item_id}",
                    extra={"item_id": str(item_id), "error": error_msg},
                    exc_info=True,
                )
                errors.append({"item_id": str(item_id), "error": error_msg})

                try:
                    self.handle_error(session, item, error_msg)
                except Exception:
                    session.rollback()
                    self._logger.error(
                        f"[{self.worker_name}] Failed to record error for item {item_id}",
                        extra={"item_id": str(item_id)},
                        exc_info=True,
                    )

            counts[outcome] += 1

        processed = counts[ItemOutcome.PROCESSED]
        failed = counts[ItemOutcome.FAILED]

        # Determine overall status
        if failed == 0 and processed > 0:
            status = WorkerStatus.SUCCESS
        elif processed > 0 and failed > 0:
            status = WorkerStatus.PARTIAL
        elif failed > 0:
            status = WorkerStatus.FAILED
        else:
            status = WorkerStatus.NO_WORK

        result = WorkerResult(
            status=status,
            processed_count=processed,
            failed_count=failed,
            canceled_count=counts[ItemOutcome.CANCELED],
            duration_ms=self._elapsed_ms(start_time),
            errors=errors,
            metadata={"items_found": len(items), "skipped": counts[ItemOutcome.SKIPPED]},
        )

        self._logger.info(
            f"[{self.worker_name}] Completed processing: {processed} sent, {failed} failed",
            extra=result.to_dict(),
        )

        return result

    def _elapsed_ms(self, start: datetime) -> float:
        """Calculate elapsed time in milliseconds."""
        return (datetime.utcnow() - start).total_seconds() * 1000
