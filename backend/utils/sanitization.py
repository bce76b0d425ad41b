"""Log sanitization utilities.

Nothing that identifies a patient may reach a log line. Identifiers that
callers supply (tenant ids, document ids) are stripped of control
characters, and free text is scrubbed of common PHI patterns.
"""

from __future__ import annotations

import logging
import re
from typing import Any

REDACTED = "[REDACTED]"

PHI_PATTERNS = {
    "ssn": re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),
    "member_id": re.compile(r"\b[A-Z]{2,3}\d{6,12}\b"),
    "dob": re.compile(r"\b(0[1-9]|1[0-2])/(0[1-9]|[12]\d|3[01])/\d{4}\b"),
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "phone": re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"),
}

PHI_FIELDS = frozenset(
    {
        "first_name",
        "last_name",
        "dob",
        "date_of_birth",
        "ssn",
        "member_id",
        "card_number",
        "account_number",
        "document_number",
        "passport_number",
        "address",
        "extracted_fields",
        "image_base64",
    }
)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def sanitize_log_value(value: Any, max_length: int = 128) -> str:
    """Make a caller-supplied identifier safe to interpolate into a log line.

    Prevents log injection (newlines, control characters) and bounds the
    length of whatever the caller sent.
    """
    if value is None:
        return "unknown"
    text = _CONTROL_CHARS.sub("", str(value))
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text or "unknown"


def redact_phi(obj: Any) -> Any:
    """Recursively redact PHI from strings, lists and mappings."""
    if isinstance(obj, str):
        redacted = obj
        for pattern in PHI_PATTERNS.values():
            redacted = pattern.sub(REDACTED, redacted)
        return redacted

    if isinstance(obj, (list, tuple)):
        return [redact_phi(item) for item in obj]

    if isinstance(obj, dict):
        return {
            key: REDACTED if key in PHI_FIELDS else redact_phi(value)
            for key, value in obj.items()
        }

    return obj


class PHIRedactionFilter(logging.Filter):
    """Logging filter that scrubs PHI patterns from formatted messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        record.msg = redact_phi(message)
        record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with PHI redaction on every handler."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    redaction_filter = PHIRedactionFilter()
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, PHIRedactionFilter) for f in handler.filters):
            handler.addFilter(redaction_filter)
