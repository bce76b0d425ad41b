"""Per-document-type verification rule sets.

Each document type maps to a table of field requirements. Adding a
document type means adding an entry here; the engine has no per-type
branches.
"""

from __future__ import annotations

from .models import DocumentRuleSet, DocumentType, FieldRequirement

EXPIRATION_FIELD = "expiration_date"

_EXPIRATION_REQUIRED = FieldRequirement(
    fields=(EXPIRATION_FIELD,), penalty=20, issue="Missing expiration date"
)

_GOVERNMENT_ID = DocumentRuleSet(
    requirements=(
        _EXPIRATION_REQUIRED,
        FieldRequirement(
            fields=("document_number",), penalty=15, issue="Missing document number"
        ),
        FieldRequirement(
            fields=("issuing_state",), penalty=10, issue="Missing issuing state"
        ),
    ),
)

# EBT cards typically don't carry an expiration date
_EBT_CARD = DocumentRuleSet(
    requirements=(
        FieldRequirement(
            fields=("card_number", "account_number"),
            penalty=30,
            issue="Missing card/account number",
        ),
        FieldRequirement(fields=("issuer",), penalty=10, issue="Missing issuer information"),
    ),
)

DOCUMENT_RULES: dict[str, DocumentRuleSet] = {
    DocumentType.DRIVERS_LICENSE.value: _GOVERNMENT_ID,
    DocumentType.STATE_ID.value: _GOVERNMENT_ID,
    DocumentType.PASSPORT.value: DocumentRuleSet(
        requirements=(
            _EXPIRATION_REQUIRED,
            FieldRequirement(
                fields=("passport_number",), penalty=20, issue="Missing passport number"
            ),
            FieldRequirement(
                fields=("issuing_country",), penalty=10, issue="Missing issuing country"
            ),
        ),
        expired_issue="Passport expired",
    ),
    DocumentType.EBT_CARD_FRONT.value: _EBT_CARD,
    DocumentType.EBT_CARD_BACK.value: _EBT_CARD,
    DocumentType.MEDICAID_CARD.value: DocumentRuleSet(
        requirements=(
            FieldRequirement(fields=("member_id",), penalty=25, issue="Missing member ID"),
            FieldRequirement(
                fields=("effective_date",), penalty=10, issue="Missing effective date"
            ),
        ),
    ),
}

# Generic check for "other" and any type without a dedicated rule set
FALLBACK_EMPTY_PENALTY = 50
FALLBACK_EMPTY_ISSUE = "No extracted fields available"

UNREADABLE_EXPIRATION_ISSUE = "Unreadable expiration date"
DEFAULT_EXPIRED_ISSUE = "Document expired"
NOT_FOUND_ISSUE = "Document not found"


def rules_for(document_type: str) -> DocumentRuleSet | None:
    """Return the rule set for a document type, or None for the fallback."""
    return DOCUMENT_RULES.get(document_type)
