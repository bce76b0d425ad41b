"""Core verification engine.

A pure function of ``(document_type, extracted_fields, today)``: the same
inputs always produce the same status, confidence and issues, which is
what makes queue redelivery safe. Missing fields are scoring penalties and
an unreadable expiration date is reported as an issue; neither raises.
"""
from __future__ import annotations

from datetime import date, datetime, timezone

from utils.date_parser import parse_document_date

from .models import (
    DocumentRuleSet,
    ExtractedFields,
    VerificationResult,
    VerificationStatus,
    has_value,
)
from .ruleset import (
    DEFAULT_EXPIRED_ISSUE,
    EXPIRATION_FIELD,
    FALLBACK_EMPTY_ISSUE,
    FALLBACK_EMPTY_PENALTY,
    NOT_FOUND_ISSUE,
    UNREADABLE_EXPIRATION_ISSUE,
    rules_for,
)
from .thresholds import StatusThresholds

BASE_CONFIDENCE = 100


def verify_document(
    document_type: str,
    extracted_fields: ExtractedFields | None,
    today: date | None = None,
    thresholds: StatusThresholds | None = None,
) -> VerificationResult:
    """Score a document's extracted fields against its rule set."""

    fields: ExtractedFields = extracted_fields or {}
    today = today or datetime.now(timezone.utc).date()
    thresholds = thresholds or StatusThresholds()
    rule_set = rules_for(document_type)

    issues: list[str] = []
    confidence = BASE_CONFIDENCE

    # Expiration is a hard override for every document type
    raw_expiration = fields.get(EXPIRATION_FIELD)
    expiration_unreadable = False
    if has_value(raw_expiration):
        expiration = parse_document_date(raw_expiration)
        if expiration is None:
            expiration_unreadable = True
        elif expiration < today:
            expired_issue = rule_set.expired_issue if rule_set else DEFAULT_EXPIRED_ISSUE
            return VerificationResult(
                status=VerificationStatus.EXPIRED,
                confidence=BASE_CONFIDENCE,
                issues=(expired_issue,),
            )

    if rule_set is None:
        confidence -= _score_fallback(fields, issues)
    else:
        confidence -= _score_rule_set(rule_set, fields, issues)

    # Informational only: a present but unreadable date is neither expired nor missing
    if expiration_unreadable:
        issues.append(UNREADABLE_EXPIRATION_ISSUE)

    confidence = StatusThresholds.clamp_confidence(confidence)
    return VerificationResult(
        status=thresholds.status_for(confidence),
        confidence=confidence,
        issues=tuple(issues),
    )


def not_found_result() -> VerificationResult:
    """Result for a job whose document has no metadata row."""
    return VerificationResult(
        status=VerificationStatus.REJECTED,
        confidence=0,
        issues=(NOT_FOUND_ISSUE,),
    )


def _score_rule_set(
    rule_set: DocumentRuleSet, fields: ExtractedFields, issues: list[str]
) -> int:
    deduction = 0
    for requirement in rule_set.requirements:
        if not requirement.is_satisfied(fields):
            issues.append(requirement.issue)
            deduction += requirement.penalty
    return deduction


def _score_fallback(fields: ExtractedFields, issues: list[str]) -> int:
    if not any(has_value(value) for value in fields.values()):
        issues.append(FALLBACK_EMPTY_ISSUE)
        return FALLBACK_EMPTY_PENALTY
    return 0

