"""
Approval Engine

Decides whether a learner's chapter score is approved, records the attempt
and answers read-side questions about evaluation history.
"""
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from config import Settings, get_settings
from approval.constants import (
    CHAPTER_STATS_CACHE_PREFIX,
    DEFAULT_HISTORY_LIMIT,
    REASON_ALREADY_APPROVED,
    REASON_MAX_ATTEMPTS,
    SUMMARY_HISTORY_LIMIT,
)
from approval.exceptions import (
    ApprovalEngineError,
    ApprovalValidationError,
    AttemptConflictError,
    UserNotFoundError,
)
from approval.models.domain import EvaluationStatus, NewEvaluation
from approval.models.schemas import (
    AttemptEligibility,
    BatchEvaluateResponse,
    BatchEvaluationError,
    ChapterStatsResponse,
    EvaluateRequest,
    EvaluateResponse,
    EvaluationHistoryItem,
    EvaluationHistoryRequest,
    EvaluationHistoryResponse,
    UserApprovalSummary,
)
from approval.repositories.base import (
    EvaluationStore,
    MetricsSink,
    RuleStore,
    UserDirectory,
)
from .attempt_tracker import AttemptTracker
from .cache import ApprovalCache
from .carryover import ErrorCarryoverCalculator
from .decision import decide
from .feedback import generate_feedback
from .key_lock import KeyedLock
from .recorder import EvaluationRecorder
from .rule_resolver import ResolvedRule, RuleResolver
from .validation import validate_evaluation_request

logger = logging.getLogger(__name__)


class ApprovalEngine:
    """
    Evaluates chapter submissions against approval rules.

    Calls for the same (user, chapter) are serialized by a per-key lock; the
    store's unique attempt constraint catches writers in other processes, and
    such a conflict is retried once with a fresh attempt number.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        evaluation_store: EvaluationStore,
        metrics_sink: MetricsSink,
        user_directory: UserDirectory,
        settings: Optional[Settings] = None,
        cache: Optional[ApprovalCache] = None,
        key_lock: Optional[KeyedLock] = None,
    ):
        self.rule_store = rule_store
        self.evaluation_store = evaluation_store
        self.metrics_sink = metrics_sink
        self.user_directory = user_directory
        self.settings = settings or get_settings()
        self.cache = cache or ApprovalCache(
            ttl=self.settings.cache_ttl_seconds, maxsize=self.settings.cache_max_entries
        )
        self.key_lock = key_lock or KeyedLock()

        self.resolver = RuleResolver(rule_store, self.settings)
        self.attempts = AttemptTracker(evaluation_store)
        self.carryover = ErrorCarryoverCalculator(self.attempts, self.settings)
        self.recorder = EvaluationRecorder(evaluation_store, metrics_sink, self.settings)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, request: EvaluateRequest) -> EvaluateResponse:
        """
        Evaluate one submission and record it.

        Every call records a new attempt; identical requests are not
        deduplicated.

        Raises:
            ApprovalValidationError: If ids are missing or the score is out of range
            UserNotFoundError: If the user does not exist
            RuleNotFoundError: If no rule applies to the chapter
            StoreError: If the evaluation could not be persisted
        """
        start_time = time.time()
        logger.info(
            f"Evaluating approval for user {request.user_id} "
            f"chapter {request.chapter_id} score {request.score}"
        )

        try:
            validate_evaluation_request(request)

            if not self.user_directory.exists(request.user_id):
                raise UserNotFoundError(request.user_id)

            resolved = self.resolver.resolve(request.chapter_id)

            with self.key_lock.hold((request.user_id, request.chapter_id)):
                try:
                    response = self._evaluate_attempt(request, resolved)
                except AttemptConflictError as e:
                    logger.warning(
                        f"Attempt {e.attempt_number} already taken for user {e.user_id} "
                        f"chapter {e.chapter_id}, retrying with a fresh attempt number"
                    )
                    response = self._evaluate_attempt(request, resolved)
        except ApprovalEngineError as e:
            logger.error(
                f"Evaluation failed for user {request.user_id} "
                f"chapter {request.chapter_id}: {e.message}"
            )
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error evaluating user {request.user_id} "
                f"chapter {request.chapter_id}: {e}",
                exc_info=True,
            )
            raise

        self.cache.delete(self._stats_cache_key(request.chapter_id))
        self.recorder.emit_metrics(
            request.user_id,
            request.chapter_id,
            request.score,
            response.attempt_number,
            request.time_spent,
        )

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(json.dumps({
            "step": "APPROVAL_EVALUATION",
            "status": "complete",
            "user_id": request.user_id,
            "chapter_id": request.chapter_id,
            "evaluation_id": response.evaluation_id,
            "result": response.status.value,
            "attempt_number": response.attempt_number,
            "errors_carried_over": response.errors_carried_over,
            "critical_chapter": resolved.is_critical,
            "duration_ms": duration_ms,
        }))
        return response

    def batch_evaluate(self, requests: List[EvaluateRequest]) -> BatchEvaluateResponse:
        """
        Evaluate many submissions on a bounded worker pool.

        Failures are collected per request; there is no cross-request
        atomicity. Results keep the input order. Stores must be bound to a
        thread-local session when the pool has more than one worker.
        """
        response = BatchEvaluateResponse()
        if not requests:
            return response

        logger.info(f"Batch evaluating {len(requests)} submissions")
        with ThreadPoolExecutor(
            max_workers=self.settings.batch_concurrency,
            thread_name_prefix="approval-batch",
        ) as pool:
            futures = [(request, pool.submit(self._evaluate_in_worker, request))
                       for request in requests]
            for request, future in futures:
                try:
                    response.results.append(future.result())
                except Exception as e:
                    response.errors.append(BatchEvaluationError(
                        request=request,
                        error=str(e),
                        error_type=type(e).__name__,
                    ))

        logger.info(
            f"Batch complete: {len(response.results)} evaluated, "
            f"{len(response.errors)} failed"
        )
        return response

    def _evaluate_in_worker(self, request: EvaluateRequest) -> EvaluateResponse:
        try:
            return self.evaluate(request)
        finally:
            for store in (self.rule_store, self.evaluation_store,
                          self.metrics_sink, self.user_directory):
                store.close()

    def _evaluate_attempt(self, request: EvaluateRequest,
                          resolved: ResolvedRule) -> EvaluateResponse:
        rule = resolved.rule
        threshold = resolved.effective_threshold

        attempt_number = self.attempts.next_attempt_number(request.user_id, request.chapter_id)
        carryover = self.carryover.calculate(
            rule, request.user_id, request.chapter_id, attempt_number
        )
        decision = decide(request.score, carryover, threshold, attempt_number, rule.max_attempts)
        feedback = generate_feedback(
            decision.status, decision.adjusted_score, threshold, attempt_number, carryover
        )

        evaluation = self.recorder.record(
            NewEvaluation(
                user_id=request.user_id,
                rule_id=rule.id,
                chapter_id=request.chapter_id,
                score=request.score,
                threshold=threshold,
                status=decision.status,
                attempt_number=attempt_number,
                errors_from_previous_attempts=carryover,
                evaluation_data=request.additional_data,
            ),
            feedback,
        )

        return EvaluateResponse(
            evaluation_id=evaluation.id,
            status=decision.status,
            score=request.score,
            adjusted_score=decision.adjusted_score,
            threshold=threshold,
            attempt_number=attempt_number,
            errors_carried_over=carryover,
            feedback=feedback,
            can_retry=decision.can_retry,
            max_attempts=rule.max_attempts,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_evaluation_history(self, request: EvaluationHistoryRequest) -> EvaluationHistoryResponse:
        """Page through a user's evaluations. Page size is capped."""
        if not request.user_id or not request.user_id.strip():
            raise ApprovalValidationError("User ID is required", field="user_id")

        limit = request.limit if request.limit and request.limit > 0 else DEFAULT_HISTORY_LIMIT
        limit = min(limit, self.settings.history_max_limit)
        offset = max(0, request.offset or 0)

        evaluations = self.evaluation_store.find_by_user(
            request.user_id,
            chapter_id=request.chapter_id,
            status=request.status,
            offset=offset,
            limit=limit,
        )
        total = self.evaluation_store.count_by_user(
            request.user_id, chapter_id=request.chapter_id, status=request.status
        )

        return EvaluationHistoryResponse(
            evaluations=[EvaluationHistoryItem.from_evaluation(e) for e in evaluations],
            total=total,
            has_more=len(evaluations) == limit,
        )

    def get_latest_evaluation(self, user_id: str,
                              chapter_id: str) -> Optional[EvaluationHistoryItem]:
        latest = self.evaluation_store.find_latest(user_id, chapter_id)
        return EvaluationHistoryItem.from_evaluation(latest) if latest else None

    def get_chapter_stats(self, chapter_id: str) -> ChapterStatsResponse:
        """Aggregate approval figures for a chapter. Cached until the next write."""
        return self.cache.get_or_load(
            self._stats_cache_key(chapter_id),
            lambda: self._load_chapter_stats(chapter_id),
        )

    def _load_chapter_stats(self, chapter_id: str) -> ChapterStatsResponse:
        stats = self.evaluation_store.chapter_stats(chapter_id)
        approval_rate = (
            round(stats.approved_count / stats.total_evaluations * 100, 2)
            if stats.total_evaluations else 0.0
        )
        return ChapterStatsResponse(
            chapter_id=chapter_id,
            total_evaluations=stats.total_evaluations,
            approved_count=stats.approved_count,
            failed_count=stats.rejected_count,
            pending_count=0,
            average_score=stats.average_score,
            average_adjusted_score=stats.average_adjusted_score,
            approval_rate=approval_rate,
            average_attempts=stats.average_attempts,
        )

    def get_user_summary(self, user_id: str) -> UserApprovalSummary:
        """Summarize a user's most recent evaluations across chapters."""
        evaluations = self.evaluation_store.find_by_user(user_id, limit=SUMMARY_HISTORY_LIMIT)

        total = len(evaluations)
        approved = [e for e in evaluations if e.is_approved()]
        approval_rate = round(len(approved) / total * 100, 2) if total else 0.0
        average_score = round(sum(e.score for e in evaluations) / total, 2) if total else 0.0

        chapters_completed: List[str] = []
        for evaluation in approved:
            if evaluation.chapter_id not in chapters_completed:
                chapters_completed.append(evaluation.chapter_id)

        # Newest first, so the streak stops at the first non-approval
        streak = 0
        for evaluation in evaluations:
            if not evaluation.is_approved():
                break
            streak += 1

        return UserApprovalSummary(
            user_id=user_id,
            total_evaluations=total,
            approved_evaluations=len(approved),
            approval_rate=approval_rate,
            average_score=average_score,
            chapters_completed=chapters_completed,
            current_streak=streak,
            last_evaluation=(
                EvaluationHistoryItem.from_evaluation(evaluations[0]) if evaluations else None
            ),
        )

    def can_attempt(self, user_id: str, chapter_id: str) -> AttemptEligibility:
        """Whether the user may submit another attempt for the chapter."""
        latest = self.evaluation_store.find_latest(user_id, chapter_id)
        if latest is None:
            return AttemptEligibility(can_attempt=True)

        if latest.status == EvaluationStatus.APPROVED:
            return AttemptEligibility(can_attempt=False, reason=REASON_ALREADY_APPROVED)

        rules = self.rule_store.find_applicable(chapter_id)
        if not rules:
            return AttemptEligibility(can_attempt=True)

        remaining = rules[0].max_attempts - latest.attempt_number
        if remaining <= 0:
            return AttemptEligibility(
                can_attempt=False, reason=REASON_MAX_ATTEMPTS, attempts_remaining=0
            )
        return AttemptEligibility(can_attempt=True, attempts_remaining=remaining)

    @staticmethod
    def _stats_cache_key(chapter_id: str) -> str:
        return f"{CHAPTER_STATS_CACHE_PREFIX}:{chapter_id}"
