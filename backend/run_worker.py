"""Entry point for the identity verification worker process.

Usage:
    python run_worker.py [--log-level INFO] [--no-sweep] [--once]

Runs the queue poll loop until SIGTERM/SIGINT, alongside the scheduled
reconciliation sweep for documents left pending.
"""

from __future__ import annotations

import argparse
import logging
import sys

from bootstrap import build_services
from config import Settings
from identity.reconciliation import ReconciliationScheduler
from utils.sanitization import configure_logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Identity document verification worker")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument(
        "--no-sweep",
        action="store_true",
        help="Don't schedule the pending-document reconciliation sweep",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process a single batch and exit",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level.upper())

    try:
        settings = Settings.from_env()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    services = build_services(settings)
    worker = services.build_worker()
    scheduler: ReconciliationScheduler | None = None

    try:
        if args.once:
            acknowledged = worker.poll_once()
            logger.info(f"Processed batch, acknowledged {acknowledged} messages")
            return 0

        if not args.no_sweep:
            scheduler = ReconciliationScheduler(
                services.build_sweeper(),
                interval_seconds=settings.reconcile_interval_seconds,
            )
            scheduler.start()

        worker.install_signal_handlers()
        worker.run()
        return 0
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=True)
        services.close()
        logger.info("Worker resources released")


if __name__ == "__main__":
    sys.exit(main())
