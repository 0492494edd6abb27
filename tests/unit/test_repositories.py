"""
Tests for the SQLAlchemy repositories against an in-memory SQLite database.
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from approval.exceptions import AttemptConflictError, MetricsError, RuleNotFoundError, StoreError
from approval.models.domain import EvaluationStatus, MetricSample, NewEvaluation
from approval.models.entities import ApprovalEvaluation, ApprovalMetric, ApprovalRule
from approval.repositories import (
    EvaluationRepository,
    MetricsRepository,
    RuleRepository,
    UserRepository,
)


# ===== Helpers =====

def _create_rule(db_session, chapter_id=None, created_at=None, **overrides):
    fields = {
        "chapter_id": chapter_id,
        "min_score_threshold": 80,
        "max_attempts": 3,
        "allow_error_carryover": True,
    }
    fields.update(overrides)
    rule = RuleRepository(db_session).create(fields)
    if created_at is not None:
        row = db_session.get(ApprovalRule, rule.id)
        row.created_at = created_at
        db_session.commit()
    return rule


def _new_evaluation(attempt_number=1, chapter_id="1", user_id="user-1",
                    rule_id="rule-1", score=70.0,
                    status=EvaluationStatus.REJECTED, **overrides):
    fields = dict(
        user_id=user_id,
        rule_id=rule_id,
        chapter_id=chapter_id,
        score=score,
        threshold=80,
        status=status,
        attempt_number=attempt_number,
    )
    fields.update(overrides)
    return NewEvaluation(**fields)


def _record(repo, **kwargs):
    staged = repo.create(_new_evaluation(**kwargs))
    return repo.update_feedback(staged.id, "feedback")


# ===== RuleRepository =====

class TestRuleRepository:
    def test_create_and_find(self, db_session):
        rule = _create_rule(db_session, chapter_id="1", metadata={"quiz": True})
        found = RuleRepository(db_session).find_by_id(rule.id)

        assert found.chapter_id == "1"
        assert found.min_score_threshold == 80
        assert found.metadata == {"quiz": True}
        assert found.is_active is True

    def test_find_by_id_missing(self, db_session):
        assert RuleRepository(db_session).find_by_id("missing") is None

    def test_find_by_chapter_only_active_oldest_first(self, db_session):
        now = datetime.utcnow()
        newer = _create_rule(db_session, chapter_id="1", created_at=now)
        older = _create_rule(db_session, chapter_id="1", created_at=now - timedelta(days=1))
        _create_rule(db_session, chapter_id="1", is_active=False)
        _create_rule(db_session, chapter_id="2")

        rules = RuleRepository(db_session).find_by_chapter("1")
        assert [r.id for r in rules] == [older.id, newer.id]

    def test_find_global(self, db_session):
        global_rule = _create_rule(db_session)
        _create_rule(db_session, chapter_id="1")
        assert [r.id for r in RuleRepository(db_session).find_global()] == [global_rule.id]

    def test_find_applicable_prefers_chapter_rules(self, db_session):
        _create_rule(db_session)
        chapter_rule = _create_rule(db_session, chapter_id="1")
        repo = RuleRepository(db_session)

        assert [r.id for r in repo.find_applicable("1")] == [chapter_rule.id]
        assert repo.find_applicable("2")[0].chapter_id is None

    def test_update_partial(self, db_session):
        rule = _create_rule(db_session, chapter_id="1", description="old")
        updated = RuleRepository(db_session).update(rule.id, {"max_attempts": 5})
        assert updated.max_attempts == 5
        assert updated.description == "old"
        assert updated.min_score_threshold == 80

    def test_update_missing_raises(self, db_session):
        with pytest.raises(RuleNotFoundError):
            RuleRepository(db_session).update("missing", {"max_attempts": 2})

    def test_activate_and_deactivate(self, db_session):
        rule = _create_rule(db_session, chapter_id="1")
        repo = RuleRepository(db_session)

        assert repo.deactivate(rule.id).is_active is False
        assert repo.find_by_chapter("1") == []
        assert repo.activate(rule.id).is_active is True

    def test_delete(self, db_session):
        rule = _create_rule(db_session)
        repo = RuleRepository(db_session)
        repo.delete(rule.id)
        assert repo.find_by_id(rule.id) is None

    def test_delete_missing_raises(self, db_session):
        with pytest.raises(RuleNotFoundError):
            RuleRepository(db_session).delete("missing")

    def test_create_wraps_database_errors(self):
        db = MagicMock()
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("locked"))
        with pytest.raises(StoreError):
            RuleRepository(db).create({"min_score_threshold": 80, "max_attempts": 1})
        db.rollback.assert_called_once()


# ===== EvaluationRepository =====

class TestEvaluationRepository:
    def test_create_is_staged_until_feedback(self, db_session):
        repo = EvaluationRepository(db_session)
        staged = repo.create(_new_evaluation())
        assert staged.feedback is None

        stored = repo.update_feedback(staged.id, "Keep going")
        assert stored.feedback == "Keep going"
        assert db_session.get(ApprovalEvaluation, staged.id).feedback == "Keep going"

    def test_rollback_discards_staged_record(self, db_session):
        repo = EvaluationRepository(db_session)
        repo.create(_new_evaluation())
        repo.rollback()
        assert repo.count_attempts("user-1", "1") == 0

    def test_duplicate_attempt_raises_conflict(self, db_session):
        repo = EvaluationRepository(db_session)
        _record(repo, attempt_number=1)

        with pytest.raises(AttemptConflictError) as exc_info:
            repo.create(_new_evaluation(attempt_number=1))
        assert exc_info.value.attempt_number == 1
        assert repo.count_attempts("user-1", "1") == 1

    def test_update_feedback_missing_row(self, db_session):
        with pytest.raises(StoreError):
            EvaluationRepository(db_session).update_feedback("missing", "text")

    def test_count_attempts_scoped_to_user_and_chapter(self, db_session):
        repo = EvaluationRepository(db_session)
        _record(repo, attempt_number=1)
        _record(repo, attempt_number=2)
        _record(repo, attempt_number=1, chapter_id="2")
        _record(repo, attempt_number=1, user_id="user-2")

        assert repo.count_attempts("user-1", "1") == 2

    def test_find_previous_attempts(self, db_session):
        repo = EvaluationRepository(db_session)
        for n in (1, 2, 3):
            _record(repo, attempt_number=n)

        previous = repo.find_previous_attempts("user-1", "1", 3)
        assert [e.attempt_number for e in previous] == [1, 2]

    def test_find_latest(self, db_session):
        repo = EvaluationRepository(db_session)
        assert repo.find_latest("user-1", "1") is None
        _record(repo, attempt_number=1)
        _record(repo, attempt_number=2)
        assert repo.find_latest("user-1", "1").attempt_number == 2

    def test_find_by_user_orders_and_filters(self, db_session):
        repo = EvaluationRepository(db_session)
        base = datetime(2024, 1, 1)
        _record(repo, attempt_number=1, chapter_id="1", evaluated_at=base)
        _record(repo, attempt_number=2, chapter_id="1", evaluated_at=base + timedelta(hours=1),
                status=EvaluationStatus.APPROVED, score=90)
        _record(repo, attempt_number=1, chapter_id="2", evaluated_at=base + timedelta(hours=2))

        newest_first = repo.find_by_user("user-1")
        assert [e.chapter_id for e in newest_first] == ["2", "1", "1"]

        by_chapter = repo.find_by_user("user-1", chapter_id="1")
        assert [e.attempt_number for e in by_chapter] == [1, 2]

        approved = repo.find_by_user("user-1", status=EvaluationStatus.APPROVED)
        assert len(approved) == 1

        page = repo.find_by_user("user-1", offset=1, limit=1)
        assert [e.chapter_id for e in page] == ["1"]

        assert repo.count_by_user("user-1") == 3
        assert repo.count_by_user("user-1", chapter_id="1") == 2

    def test_count_by_rule(self, db_session):
        repo = EvaluationRepository(db_session)
        _record(repo, rule_id="rule-1")
        _record(repo, rule_id="rule-2", chapter_id="2")
        assert repo.count_by_rule("rule-1") == 1
        assert repo.count_by_rule("rule-3") == 0

    def test_evaluation_data_round_trip(self, db_session):
        repo = EvaluationRepository(db_session)
        stored = _record(repo, evaluation_data={"quiz_id": "q1"})
        assert repo.find_latest("user-1", "1").evaluation_data == {"quiz_id": "q1"}
        assert stored.evaluation_data == {"quiz_id": "q1"}

    def test_chapter_stats(self, db_session):
        repo = EvaluationRepository(db_session)
        _record(repo, user_id="user-1", attempt_number=1, score=70)
        _record(repo, user_id="user-1", attempt_number=2, score=85,
                status=EvaluationStatus.APPROVED, errors_from_previous_attempts=1)
        _record(repo, user_id="user-2", attempt_number=1, score=90,
                status=EvaluationStatus.APPROVED)

        stats = repo.chapter_stats("1")
        assert stats.total_evaluations == 3
        assert stats.approved_count == 2
        assert stats.rejected_count == 1
        assert stats.average_score == 81.67
        assert stats.average_adjusted_score == 81.33
        assert stats.average_attempts == 1.5

    def test_chapter_stats_empty(self, db_session):
        stats = EvaluationRepository(db_session).chapter_stats("9")
        assert stats.total_evaluations == 0
        assert stats.average_score == 0


# ===== MetricsRepository =====

class TestMetricsRepository:
    def test_create_bulk(self, db_session):
        MetricsRepository(db_session).create_bulk([
            MetricSample.accuracy("user-1", "1", 85),
            MetricSample.attempts("user-1", "1", 2),
            MetricSample.speed("user-1", "1", 300),
        ])

        rows = db_session.query(ApprovalMetric).all()
        assert sorted(r.metric_type for r in rows) == ["accuracy", "attempts", "speed"]
        speed = next(r for r in rows if r.metric_type == "speed")
        assert speed.value == 300
        assert speed.unit == "seconds"

    def test_create_bulk_empty_is_noop(self):
        db = MagicMock()
        MetricsRepository(db).create_bulk([])
        db.add_all.assert_not_called()

    def test_failure_raises_metrics_error(self):
        db = MagicMock()
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("locked"))
        with pytest.raises(MetricsError):
            MetricsRepository(db).create_bulk([MetricSample.accuracy("user-1", "1", 85)])
        db.rollback.assert_called_once()

    def test_plain_session_has_no_background_sink(self, db_session):
        assert MetricsRepository(db_session).open_background() is None

    def test_background_sink_owns_a_fresh_session(self, file_db):
        request_session = file_db.get_session()
        repo = MetricsRepository(request_session, session_factory=file_db.session_factory)
        try:
            background = repo.open_background()
            assert background.db is not request_session

            background.create_bulk([MetricSample.accuracy("user-1", "1", 85)])
            background.close()

            assert request_session.query(ApprovalMetric).count() == 1
        finally:
            request_session.close()

    def test_scoped_session_is_its_own_background_sink(self, file_db):
        repo = MetricsRepository(file_db.scoped_session)
        assert repo.open_background() is repo


# ===== UserRepository =====

class TestUserRepository:
    def test_exists(self, db_session):
        repo = UserRepository(db_session)
        repo.create("user-1", email="a@example.com")
        assert repo.exists("user-1") is True
        assert repo.exists("user-2") is False


# ===== Read failures =====

def _failing_session():
    db = MagicMock()
    db.query.side_effect = OperationalError("SELECT", {}, Exception("no such table"))
    return db


class TestReadFailures:
    @pytest.mark.parametrize("call", [
        lambda repo: repo.count_attempts("user-1", "1"),
        lambda repo: repo.find_previous_attempts("user-1", "1", 2),
        lambda repo: repo.find_latest("user-1", "1"),
        lambda repo: repo.find_by_user("user-1"),
        lambda repo: repo.count_by_user("user-1"),
        lambda repo: repo.count_by_rule("rule-1"),
        lambda repo: repo.chapter_stats("1"),
    ])
    def test_evaluation_reads_raise_store_error(self, call):
        db = _failing_session()
        with pytest.raises(StoreError):
            call(EvaluationRepository(db))
        db.rollback.assert_called_once()

    @pytest.mark.parametrize("call", [
        lambda repo: repo.find_by_id("rule-1"),
        lambda repo: repo.find_by_chapter("1"),
        lambda repo: repo.find_global(),
        lambda repo: repo.find_active(),
    ])
    def test_rule_reads_raise_store_error(self, call):
        with pytest.raises(StoreError):
            call(RuleRepository(_failing_session()))

    def test_user_lookup_raises_store_error(self):
        with pytest.raises(StoreError):
            UserRepository(_failing_session()).exists("user-1")

    def test_store_error_maps_to_500(self):
        with pytest.raises(StoreError) as exc_info:
            EvaluationRepository(_failing_session()).count_attempts("user-1", "1")
        assert exc_info.value.to_http_exception().status_code == 500
