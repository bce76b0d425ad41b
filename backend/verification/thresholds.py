"""Threshold configuration for verification statuses."""
from __future__ import annotations

from dataclasses import dataclass

from .models import VerificationStatus


@dataclass(frozen=True)
class StatusThresholds:
    verified_min: int = 80
    review_min: int = 50

    def status_for(self, confidence: int) -> VerificationStatus:
        if confidence >= self.verified_min:
            return VerificationStatus.VERIFIED
        if confidence >= self.review_min:
            return VerificationStatus.NEEDS_REVIEW
        return VerificationStatus.REJECTED

    @staticmethod
    def clamp_confidence(confidence: int) -> int:
        if confidence < 0:
            return 0
        if confidence > 100:
            return 100
        return confidence
