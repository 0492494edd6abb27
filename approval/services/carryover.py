"""
Error carryover penalty.

Each rejected previous attempt costs one point per started block of
shortfall below that attempt's threshold. The total is capped.
"""
import math
from typing import Iterable, Optional

from config import Settings, get_settings
from approval.models.domain import Evaluation, EvaluationStatus, Rule
from .attempt_tracker import AttemptTracker


def calculate_carryover(previous_attempts: Iterable[Evaluation],
                        points_per_penalty: int = 10,
                        max_penalty: int = 50) -> int:
    """
    Penalty carried into the next attempt.

    Uses raw scores, not adjusted ones. Approved or pending attempts do not
    count.
    """
    total = 0
    for attempt in previous_attempts:
        if attempt.status != EvaluationStatus.REJECTED:
            continue
        shortfall = max(0, attempt.threshold - attempt.score)
        total += math.ceil(shortfall / points_per_penalty)
    return min(total, max_penalty)


class ErrorCarryoverCalculator:
    """Applies calculate_carryover() to a user's history when the rule allows it."""

    def __init__(self, attempt_tracker: AttemptTracker, settings: Optional[Settings] = None):
        self.attempt_tracker = attempt_tracker
        self.settings = settings or get_settings()

    def calculate(self, rule: Rule, user_id: str, chapter_id: str, attempt_number: int) -> int:
        if not rule.allow_error_carryover or attempt_number <= 1:
            return 0

        previous = self.attempt_tracker.previous_attempts(user_id, chapter_id, attempt_number)
        return calculate_carryover(
            previous,
            points_per_penalty=self.settings.carryover_points_per_penalty,
            max_penalty=self.settings.carryover_max_penalty,
        )
