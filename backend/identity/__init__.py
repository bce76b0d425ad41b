"""Identity document ingest, verification worker and reconciliation."""

from .reconciliation import PendingDocumentSweeper, ReconciliationScheduler
from .service import IdentityIngestService
from .worker import IdentityVerificationWorker

__all__ = [
    "IdentityIngestService",
    "IdentityVerificationWorker",
    "PendingDocumentSweeper",
    "ReconciliationScheduler",
]
