"""
Review policy implementation.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from ..config import ReviewConfig
from ..schemas.receipt import EngineId, ExtractedReceipt


@dataclass
class ReviewThresholds:
    """Per-engine thresholds for the review decision (0-100 scale)."""

    cloud_threshold: float = 80.0  # Cloud results below this: REVIEW
    offline_threshold: float = 60.0  # Offline results below this: REVIEW

    # Used when the engine reports no confidence at all
    cloud_default_confidence: float = 75.0
    offline_default_confidence: float = 40.0

    # Allowed drift between total and subtotal + tax
    total_tolerance: Decimal = Decimal("0.05")

    @classmethod
    def from_config(cls, review: ReviewConfig) -> "ReviewThresholds":
        return cls(
            cloud_threshold=review.cloud_threshold,
            offline_threshold=review.offline_threshold,
            cloud_default_confidence=review.cloud_default_confidence,
            offline_default_confidence=review.offline_default_confidence,
            total_tolerance=Decimal(review.total_tolerance),
        )

    def threshold_for(self, engine_id: EngineId) -> float:
        return self.cloud_threshold if engine_id.is_cloud else self.offline_threshold

    def default_confidence_for(self, engine_id: EngineId) -> float:
        if engine_id.is_cloud:
            return self.cloud_default_confidence
        return self.offline_default_confidence


@dataclass
class ReviewDecision:
    """Outcome of the review policy for one receipt."""

    needs_review: bool
    reasons: list[str] = field(default_factory=list)

    @property
    def reason(self) -> Optional[str]:
        """All triggering conditions as one human-readable string."""
        return "; ".join(self.reasons) if self.reasons else None


class ReviewPolicy:
    """
    Decides whether an extracted receipt can be auto-filed.

    Rules (every matching rule is reported):
    - Confidence below the engine's threshold
    - Total missing
    - Date missing
    - Items empty while a total is present
    - Total deviating from subtotal + tax beyond the tolerance
    """

    def __init__(self, thresholds: Optional[ReviewThresholds] = None):
        """Initialize policy with thresholds."""
        self.thresholds = thresholds or ReviewThresholds()

    def resolve_confidence(self, engine_id: EngineId, reported: Optional[float]) -> float:
        """Engine-reported confidence clamped to 0-100, or the engine default band."""
        if reported is None:
            return self.thresholds.default_confidence_for(engine_id)
        return max(0.0, min(100.0, float(reported)))

    def evaluate(self, receipt: ExtractedReceipt) -> ReviewDecision:
        reasons: list[str] = []

        threshold = self.thresholds.threshold_for(receipt.engine_id)
        if receipt.confidence_score < threshold:
            reasons.append(
                f"Low confidence ({receipt.confidence_score:.1f} < {threshold:.0f} "
                f"for {receipt.engine_id.value})"
            )

        if receipt.total is None:
            reasons.append("Total amount is missing")

        if not receipt.date:
            reasons.append("Date is missing")

        if receipt.total is not None and not receipt.items:
            reasons.append("No line items recognized")

        if receipt.total is not None and receipt.subtotal is not None and receipt.tax is not None:
            expected = receipt.subtotal + receipt.tax
            if abs(receipt.total - expected) > self.thresholds.total_tolerance:
                reasons.append(
                    f"Total {receipt.total} does not match subtotal + tax ({expected})"
                )

        return ReviewDecision(needs_review=bool(reasons), reasons=reasons)

    def apply(self, receipt: ExtractedReceipt) -> ExtractedReceipt:
        """Evaluate and write the decision onto the receipt."""
        decision = self.evaluate(receipt)
        receipt.needs_review = decision.needs_review
        receipt.review_reasons = list(decision.reasons)
        receipt.review_reason = decision.reason
        return receipt
