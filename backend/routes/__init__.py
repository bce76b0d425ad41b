"""API route modules for the identity document pipeline.

This package contains focused routers that are registered with the main FastAPI app.

Routers:
- identity: document upload, metadata, listing and download URLs
- blobs: token-authenticated downloads for the local blob backend
- audit: HIPAA-compliant audit log listing
"""

from .audit import router as audit_router
from .blobs import router as blobs_router
from .dependencies import limiter
from .identity import router as identity_router

__all__ = ["identity_router", "blobs_router", "audit_router", "limiter"]
