#!/usr/bin/env python3
"""Dev entrypoint for running the reminder scheduler.

Usage:
    # Single tick (dispatch everything due now)
    python scripts/run_scheduler.py --once

    # Continuous loop (Ctrl+C to stop)
    python scripts/run_scheduler.py --loop

    # Loop with custom interval
    python scripts/run_scheduler.py --loop --interval 10

    # Limit iterations (for testing)
    python scripts/run_scheduler.py --loop --max-iterations 5

Environment variables:
    REMINDER_BATCH_SIZE: Reminders per tick (default: 100)
    REMINDER_POLL_INTERVAL_SECONDS: Seconds between ticks (default: 60)
    REMINDER_SEND_TIMEOUT_SECONDS: Timeout per provider call (default: 10)
    RESEND_API_KEY, EMAIL_FROM: Email channel credentials
    TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER: SMS channel credentials
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from testimo.workers import (
    configure_worker_logging,
    run_scheduler_loop,
    run_scheduler_once,
)


def main() -> int:
    """Main entrypoint for the scheduler runner."""
    parser = argparse.ArgumentParser(
        description="Run the testimonial reminder scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    # Mode selection
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run one tick and exit",
    )
    mode.add_argument(
        "--loop",
        action="store_true",
        help="Run ticks continuously on a fixed interval",
    )

    # Configuration
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between tick starts (loop mode only)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Maximum ticks before stopping (loop mode only)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Reminders to process per tick",
    )

    # Logging
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Reduce logging to warnings only",
    )

    args = parser.parse_args()

    # Configure logging
    if args.verbose:
        configure_worker_logging(logging.DEBUG)
    elif args.quiet:
        configure_worker_logging(logging.WARNING)
    else:
        configure_worker_logging(logging.INFO)

    logger = logging.getLogger(__name__)

    try:
        if args.once:
            logger.info("Running scheduler once...")
            result = run_scheduler_once(batch_size=args.batch_size)

            # Print summary
            print("\n--- Scheduler Tick Summary ---")
            print(f"Sent: {result.total_processed}")
            print(f"Failed: {result.total_failed}")
            if result.result is not None:
                print(f"Canceled: {result.result.canceled_count}")
                print(f"Status: {result.result.status.value}")

            if result.errors:
                print(f"Errors: {len(result.errors)}")
                for err in result.errors:
                    print(f"  - {err}")

            return 0 if not result.errors else 1

        elif args.loop:
            logger.info("Starting scheduler loop (Ctrl+C to stop)...")
            run_scheduler_loop(
                interval_seconds=args.interval,
                max_iterations=args.max_iterations,
                batch_size=args.batch_size,
            )
            return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Scheduler failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
