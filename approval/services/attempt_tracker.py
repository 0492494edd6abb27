"""Attempt numbering and prior-attempt lookup for a (user, chapter) pair."""
from typing import List

from approval.models.domain import Evaluation
from approval.repositories.base import EvaluationStore


class AttemptTracker:
    """Derives attempt numbers from the evaluation store."""

    def __init__(self, evaluation_store: EvaluationStore):
        self.evaluation_store = evaluation_store

    def next_attempt_number(self, user_id: str, chapter_id: str) -> int:
        return self.evaluation_store.count_attempts(user_id, chapter_id) + 1

    def previous_attempts(self, user_id: str, chapter_id: str,
                          attempt_number: int) -> List[Evaluation]:
        """Attempts before attempt_number, ascending. Empty for a first attempt."""
        if attempt_number <= 1:
            return []
        return self.evaluation_store.find_previous_attempts(user_id, chapter_id, attempt_number)
