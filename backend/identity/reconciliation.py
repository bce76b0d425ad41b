"""Reconciliation sweep for documents stuck in ``pending``.

Upload enqueues the verification job after the metadata row commits. If
that enqueue fails, the caller sees an error but the row stays pending
with nothing on the queue. The sweep finds pending rows whose last job
was sent more than ``stale_after_seconds`` ago and enqueues them again,
stamping ``last_enqueued_at`` so each document gets at most one new job
per stale window even while the worker is down. A duplicate job for a
document already in flight is harmless because processing is idempotent.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from errors import IdentityServiceError
from messaging.queue import VerificationJob, VerificationQueue
from storage.database import TenantScopedDatabase
from storage.documents import IdentityDocumentRepository
from utils.sanitization import sanitize_log_value

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "identity-pending-sweep"


class PendingDocumentSweeper:
    """Re-enqueues verification jobs for stale pending documents."""

    def __init__(
        self,
        database: TenantScopedDatabase,
        queue: VerificationQueue,
        documents: IdentityDocumentRepository,
        stale_after_seconds: int = 900,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.database = database
        self.queue = queue
        self.documents = documents
        self.stale_after_seconds = stale_after_seconds
        self.now = now or (lambda: datetime.now(timezone.utc))

    def sweep(self) -> int:
        """Run one pass over every tenant with pending documents.

        A failure for one tenant is logged and does not stop the others.

        Returns:
            Number of jobs enqueued
        """
        now = self.now()
        enqueued_at = now.isoformat()
        cutoff = (now - timedelta(seconds=self.stale_after_seconds)).isoformat()
        enqueued = 0

        for tenant_id in self.database.list_tenants_with_pending_documents():
            try:
                with self.database.scope(tenant_id) as session:
                    stale = self.documents.list_stale_pending(session, cutoff)
                for document in stale:
                    self.queue.send(
                        VerificationJob(
                            document_id=document.id,
                            patient_id=document.patient_id,
                            document_type=document.document_type,
                            tenant_id=document.tenant_id,
                        )
                    )
                    enqueued += 1
                    with self.database.scope(tenant_id) as session:
                        self.documents.mark_enqueued(session, document.id, enqueued_at)
            except IdentityServiceError as e:
                logger.error(
                    f"Pending sweep failed for tenant {sanitize_log_value(tenant_id)}: "
                    f"{e.message}"
                )

        if enqueued:
            logger.info(f"Re-enqueued {enqueued} stale pending documents")
        return enqueued


class ReconciliationScheduler:
    """Runs the pending sweep on an APScheduler interval job."""

    def __init__(self, sweeper: PendingDocumentSweeper, interval_seconds: int = 600) -> None:
        self.sweeper = sweeper
        self.interval_seconds = interval_seconds
        self._scheduler: BackgroundScheduler | None = None

    def _run_sweep(self) -> None:
        try:
            self.sweeper.sweep()
        except Exception:
            logger.exception("Pending document sweep failed")

    def start(self) -> None:
        if self._scheduler is not None:
            logger.warning("Reconciliation scheduler already started")
            return

        scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Never overlap sweeps
            },
            timezone="UTC",
        )
        scheduler.add_job(
            self._run_sweep,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"Reconciliation sweep scheduled every {self.interval_seconds}s")

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=wait)
            self._scheduler = None
            logger.info("Reconciliation scheduler shutdown")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None
