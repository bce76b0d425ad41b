"""Verification engine for identity and benefit documents."""

from .engine import not_found_result, verify_document
from .models import (
    DocumentRuleSet,
    DocumentType,
    ExtractedFields,
    FieldRequirement,
    VerificationResult,
    VerificationStatus,
)
from .ruleset import DOCUMENT_RULES, rules_for
from .thresholds import StatusThresholds

__all__ = [
    "verify_document",
    "not_found_result",
    "DocumentRuleSet",
    "DocumentType",
    "ExtractedFields",
    "FieldRequirement",
    "VerificationResult",
    "VerificationStatus",
    "DOCUMENT_RULES",
    "rules_for",
    "StatusThresholds",
]
