"""Pass/fail decision for a single attempt."""
from dataclasses import dataclass

from approval.models.domain import EvaluationStatus


@dataclass(frozen=True)
class Decision:
    adjusted_score: float
    status: EvaluationStatus
    can_retry: bool


def decide(score: float, carryover: int, threshold: float,
           attempt_number: int, max_attempts: int) -> Decision:
    """
    Apply the carryover penalty and compare against the threshold.

    The adjusted score never drops below zero. A rejected learner may retry
    only while attempt_number is below max_attempts.
    """
    adjusted_score = max(0, score - carryover)
    if adjusted_score >= threshold:
        return Decision(adjusted_score, EvaluationStatus.APPROVED, can_retry=False)
    return Decision(
        adjusted_score,
        EvaluationStatus.REJECTED,
        can_retry=attempt_number < max_attempts,
    )
