"""Shared utility functions for the identity document pipeline."""

from .date_parser import parse_document_date
from .sanitization import (
    PHIRedactionFilter,
    configure_logging,
    redact_phi,
    sanitize_log_value,
)

__all__ = [
    "parse_document_date",
    "PHIRedactionFilter",
    "configure_logging",
    "redact_phi",
    "sanitize_log_value",
]
