"""PHI Identity Document Service Backend Package.

This package provides the FastAPI backend and worker for multi-tenant
identity document intake and verification, including:

- Document upload into a KMS-encrypted PHI blob store
- Queue-driven verification worker (at-least-once, idempotent)
- Rule-table verification engine with confidence scoring
- Tenant-scoped relational access that fails closed
- PHI-safe domain events and HIPAA audit trail

Usage:
    # API (from project root):
    PYTHONPATH=backend uvicorn app:app --reload --port 3006

    # Worker:
    PYTHONPATH=backend python backend/run_worker.py

Modules:
    app: FastAPI application entry point
    run_worker: Verification worker entry point
    bootstrap: Dependency wiring shared by both processes
    identity: Ingest service, worker loop, reconciliation sweep
    verification: Verification engine and rule sets
    storage: Relational store, blob store, repositories
    messaging: Verification queue and event bus adapters
    tenancy: Tenant context and tenant-scoped sessions
    security: API key auth and field encryption
"""

__version__ = "0.1.0"
