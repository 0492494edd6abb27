"""Approval evaluation data access layer."""
import logging
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from approval.exceptions import AttemptConflictError, StoreError
from approval.models.domain import (
    ChapterEvaluationStats,
    Evaluation,
    EvaluationStatus,
    NewEvaluation,
)
from approval.models.entities import ApprovalEvaluation
from approval.utils import dump_json, load_json
from .base import EvaluationStore
from .session import SessionRepository

logger = logging.getLogger(__name__)

ATTEMPT_CONSTRAINT = "uq_evaluation_user_chapter_attempt"


class EvaluationRepository(SessionRepository, EvaluationStore):
    """Repository for approval_evaluations. Rows are never deleted."""

    def create(self, evaluation: NewEvaluation) -> Evaluation:
        """
        Stage a new evaluation row.

        The row is flushed so the unique attempt constraint is checked, but it
        is only committed by update_feedback().

        Raises:
            AttemptConflictError: If the attempt number is already taken
            StoreError: On any other database failure
        """
        row = ApprovalEvaluation(
            id=str(uuid4()),
            user_id=evaluation.user_id,
            rule_id=evaluation.rule_id,
            chapter_id=evaluation.chapter_id,
            score=evaluation.score,
            threshold=evaluation.threshold,
            status=evaluation.status.value,
            attempt_number=evaluation.attempt_number,
            errors_from_previous_attempts=evaluation.errors_from_previous_attempts,
            evaluation_data_json=dump_json(evaluation.evaluation_data),
            evaluated_at=evaluation.evaluated_at,
        )
        try:
            self.db.add(row)
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            if self._is_attempt_conflict(e):
                raise AttemptConflictError(
                    evaluation.user_id, evaluation.chapter_id, evaluation.attempt_number, e
                ) from e
            raise StoreError("create evaluation", e) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("create evaluation", e) from e
        return self._to_domain(row)

    def update_feedback(self, evaluation_id: str, feedback: str) -> Evaluation:
        """Attach feedback to a staged evaluation and commit both writes."""
        try:
            row = self._get_row(evaluation_id)
            if row is None:
                raise StoreError(
                    "update feedback", LookupError(f"Evaluation {evaluation_id} not found")
                )
            row.feedback = feedback
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("update feedback", e) from e
        return self._to_domain(row)

    def rollback(self) -> None:
        self.db.rollback()

    def count_attempts(self, user_id: str, chapter_id: str) -> int:
        with self.reading("count attempts"):
            return (
                self.db.query(ApprovalEvaluation)
                .filter(
                    ApprovalEvaluation.user_id == user_id,
                    ApprovalEvaluation.chapter_id == chapter_id,
                )
                .count()
            )

    def find_previous_attempts(self, user_id: str, chapter_id: str,
                               current_attempt: int) -> List[Evaluation]:
        with self.reading("find previous attempts"):
            rows = (
                self.db.query(ApprovalEvaluation)
                .filter(
                    ApprovalEvaluation.user_id == user_id,
                    ApprovalEvaluation.chapter_id == chapter_id,
                    ApprovalEvaluation.attempt_number < current_attempt,
                )
                .order_by(ApprovalEvaluation.attempt_number.asc())
                .all()
            )
        return [self._to_domain(row) for row in rows]

    def find_latest(self, user_id: str, chapter_id: str) -> Optional[Evaluation]:
        with self.reading("find latest evaluation"):
            row = (
                self.db.query(ApprovalEvaluation)
                .filter(
                    ApprovalEvaluation.user_id == user_id,
                    ApprovalEvaluation.chapter_id == chapter_id,
                )
                .order_by(ApprovalEvaluation.attempt_number.desc())
                .first()
            )
        return self._to_domain(row) if row else None

    def find_by_user(self, user_id: str, chapter_id: Optional[str] = None,
                     status: Optional[EvaluationStatus] = None,
                     offset: int = 0, limit: Optional[int] = None) -> List[Evaluation]:
        """
        List a user's evaluations.

        Chapter-scoped listings follow attempt order; otherwise newest first.
        """
        query = self._user_query(user_id, chapter_id, status)
        if chapter_id:
            query = query.order_by(ApprovalEvaluation.attempt_number.asc())
        else:
            query = query.order_by(
                ApprovalEvaluation.evaluated_at.desc(), ApprovalEvaluation.created_at.desc()
            )
        query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        with self.reading("list evaluations"):
            rows = query.all()
        return [self._to_domain(row) for row in rows]

    def count_by_user(self, user_id: str, chapter_id: Optional[str] = None,
                      status: Optional[EvaluationStatus] = None) -> int:
        with self.reading("count evaluations"):
            return self._user_query(user_id, chapter_id, status).count()

    def count_by_rule(self, rule_id: str) -> int:
        with self.reading("count evaluations by rule"):
            return (
                self.db.query(ApprovalEvaluation)
                .filter(ApprovalEvaluation.rule_id == rule_id)
                .count()
            )

    def chapter_stats(self, chapter_id: str) -> ChapterEvaluationStats:
        """Aggregate approval figures for a chapter."""
        with self.reading("chapter stats"):
            rows = (
                self.db.query(
                    ApprovalEvaluation.user_id,
                    ApprovalEvaluation.score,
                    ApprovalEvaluation.status,
                    ApprovalEvaluation.attempt_number,
                    ApprovalEvaluation.errors_from_previous_attempts,
                )
                .filter(ApprovalEvaluation.chapter_id == chapter_id)
                .all()
            )
        if not rows:
            return ChapterEvaluationStats()

        total = len(rows)
        approved = sum(1 for r in rows if r.status == EvaluationStatus.APPROVED.value)
        rejected = sum(1 for r in rows if r.status == EvaluationStatus.REJECTED.value)
        average_score = sum(r.score for r in rows) / total
        average_adjusted = sum(
            max(0, r.score - (r.errors_from_previous_attempts or 0)) for r in rows
        ) / total

        # Attempts per user = the highest attempt number they reached
        user_attempts = {}
        for r in rows:
            user_attempts[r.user_id] = max(user_attempts.get(r.user_id, 0), r.attempt_number)
        average_attempts = sum(user_attempts.values()) / len(user_attempts)

        return ChapterEvaluationStats(
            total_evaluations=total,
            approved_count=approved,
            rejected_count=rejected,
            average_score=round(average_score, 2),
            average_adjusted_score=round(average_adjusted, 2),
            average_attempts=round(average_attempts, 2),
        )

    def _get_row(self, evaluation_id: str) -> Optional[ApprovalEvaluation]:
        with self.reading("load evaluation"):
            return (
                self.db.query(ApprovalEvaluation)
                .filter(ApprovalEvaluation.id == evaluation_id)
                .first()
            )

    def _user_query(self, user_id: str, chapter_id: Optional[str],
                    status: Optional[EvaluationStatus]):
        query = self.db.query(ApprovalEvaluation).filter(ApprovalEvaluation.user_id == user_id)
        if chapter_id:
            query = query.filter(ApprovalEvaluation.chapter_id == chapter_id)
        if status:
            query = query.filter(ApprovalEvaluation.status == EvaluationStatus(status).value)
        return query

    @staticmethod
    def _is_attempt_conflict(error: IntegrityError) -> bool:
        message = str(error.orig)
        return ATTEMPT_CONSTRAINT in message or "attempt_number" in message

    @staticmethod
    def _to_domain(row: ApprovalEvaluation) -> Evaluation:
        return Evaluation(
            id=row.id,
            user_id=row.user_id,
            rule_id=row.rule_id,
            chapter_id=row.chapter_id,
            score=row.score,
            threshold=row.threshold,
            status=EvaluationStatus(row.status),
            attempt_number=row.attempt_number,
            errors_from_previous_attempts=row.errors_from_previous_attempts or 0,
            feedback=row.feedback,
            evaluation_data=load_json(row.evaluation_data_json),
            evaluated_at=row.evaluated_at,
        )
