"""
Collaborator interfaces consumed by the approval engine.

The engine only talks to these abstract stores; the SQLAlchemy repositories
in this package are one implementation of them.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from approval.models.domain import (
    ChapterEvaluationStats,
    Evaluation,
    EvaluationStatus,
    MetricSample,
    NewEvaluation,
    Rule,
)


class Store(ABC):
    """Common base for the engine's collaborators."""

    def close(self) -> None:
        """Release per-thread resources. Called when a worker thread is done."""


class RuleStore(Store):
    """Source of approval rules."""

    @abstractmethod
    def find_by_id(self, rule_id: str) -> Optional[Rule]:
        ...

    @abstractmethod
    def find_by_chapter(self, chapter_id: str) -> List[Rule]:
        """Active rules scoped to the chapter, oldest first."""

    @abstractmethod
    def find_global(self) -> List[Rule]:
        """Active rules with no chapter, oldest first."""

    @abstractmethod
    def find_active(self) -> List[Rule]:
        ...

    def find_applicable(self, chapter_id: Optional[str] = None) -> List[Rule]:
        """Chapter rules when any exist, otherwise global rules. Never merged."""
        if not chapter_id:
            return self.find_global()
        chapter_rules = self.find_by_chapter(chapter_id)
        return chapter_rules if chapter_rules else self.find_global()

    @abstractmethod
    def create(self, fields: Dict[str, Any]) -> Rule:
        ...

    @abstractmethod
    def update(self, rule_id: str, fields: Dict[str, Any]) -> Rule:
        ...

    @abstractmethod
    def delete(self, rule_id: str) -> None:
        ...

    def activate(self, rule_id: str) -> Rule:
        return self.update(rule_id, {"is_active": True})

    def deactivate(self, rule_id: str) -> Rule:
        return self.update(rule_id, {"is_active": False})


class EvaluationStore(Store):
    """System of record for evaluation attempts.

    ``create`` stages a record and ``update_feedback`` completes it; the pair
    is one logical write. ``rollback`` discards a staged record that never
    received its feedback.
    """

    @abstractmethod
    def create(self, evaluation: NewEvaluation) -> Evaluation:
        ...

    @abstractmethod
    def update_feedback(self, evaluation_id: str, feedback: str) -> Evaluation:
        ...

    @abstractmethod
    def rollback(self) -> None:
        ...

    @abstractmethod
    def count_attempts(self, user_id: str, chapter_id: str) -> int:
        ...

    @abstractmethod
    def find_previous_attempts(self, user_id: str, chapter_id: str,
                               current_attempt: int) -> List[Evaluation]:
        """Attempts numbered below current_attempt, ascending."""

    @abstractmethod
    def find_latest(self, user_id: str, chapter_id: str) -> Optional[Evaluation]:
        ...

    @abstractmethod
    def find_by_user(self, user_id: str, chapter_id: Optional[str] = None,
                     status: Optional[EvaluationStatus] = None,
                     offset: int = 0, limit: Optional[int] = None) -> List[Evaluation]:
        ...

    @abstractmethod
    def count_by_user(self, user_id: str, chapter_id: Optional[str] = None,
                      status: Optional[EvaluationStatus] = None) -> int:
        ...

    @abstractmethod
    def count_by_rule(self, rule_id: str) -> int:
        ...

    @abstractmethod
    def chapter_stats(self, chapter_id: str) -> ChapterEvaluationStats:
        ...


class MetricsSink(Store):
    """Best-effort telemetry destination."""

    @abstractmethod
    def create_bulk(self, samples: List[MetricSample]) -> None:
        ...

    def open_background(self) -> Optional["MetricsSink"]:
        """A sink safe to write from another thread, or None if there is none.

        The returned sink is closed by the thread that uses it.
        """
        return None


class UserDirectory(Store):
    """Answers whether a user exists."""

    @abstractmethod
    def exists(self, user_id: str) -> bool:
        ...
