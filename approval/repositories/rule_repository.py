"""Approval rule data access layer."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from approval.exceptions import RuleNotFoundError, StoreError
from approval.models.domain import Rule
from approval.models.entities import ApprovalRule
from approval.utils import dump_json, load_json
from .base import RuleStore
from .session import SessionRepository

logger = logging.getLogger(__name__)


class RuleRepository(SessionRepository, RuleStore):
    """Repository for approval_rules CRUD operations."""

    def find_by_id(self, rule_id: str) -> Optional[Rule]:
        row = self._get_row(rule_id)
        return self._to_domain(row) if row else None

    def find_by_chapter(self, chapter_id: str) -> List[Rule]:
        return self._active_rules(ApprovalRule.chapter_id == chapter_id)

    def find_global(self) -> List[Rule]:
        return self._active_rules(ApprovalRule.chapter_id.is_(None))

    def find_active(self) -> List[Rule]:
        return self._active_rules()

    def create(self, fields: Dict[str, Any]) -> Rule:
        """
        Insert a new rule.

        Args:
            fields: Rule attributes; ``metadata`` is stored as JSON

        Returns:
            Created Rule
        """
        now = datetime.utcnow()
        row = ApprovalRule(
            id=str(uuid4()),
            chapter_id=fields.get("chapter_id"),
            min_score_threshold=fields["min_score_threshold"],
            max_attempts=fields["max_attempts"],
            allow_error_carryover=fields.get("allow_error_carryover", False),
            is_active=fields.get("is_active", True),
            metadata_json=dump_json(fields.get("metadata")),
            description=fields.get("description"),
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("create rule", e) from e
        return self._to_domain(row)

    def update(self, rule_id: str, fields: Dict[str, Any]) -> Rule:
        """
        Apply a partial update.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        row = self._get_row(rule_id)
        if row is None:
            raise RuleNotFoundError(rule_id=rule_id)

        for key, value in fields.items():
            if key == "metadata":
                row.metadata_json = dump_json(value)
            elif hasattr(row, key):
                setattr(row, key, value)
        row.updated_at = datetime.utcnow()

        try:
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("update rule", e) from e
        return self._to_domain(row)

    def delete(self, rule_id: str) -> None:
        row = self._get_row(rule_id)
        if row is None:
            raise RuleNotFoundError(rule_id=rule_id)
        try:
            self.db.delete(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("delete rule", e) from e

    def _get_row(self, rule_id: str) -> Optional[ApprovalRule]:
        with self.reading("load rule"):
            return self.db.query(ApprovalRule).filter(ApprovalRule.id == rule_id).first()

    def _active_rules(self, *criteria) -> List[Rule]:
        with self.reading("list rules"):
            rows = (
                self.db.query(ApprovalRule)
                .filter(ApprovalRule.is_active.is_(True), *criteria)
                .order_by(ApprovalRule.created_at.asc(), ApprovalRule.id.asc())
                .all()
            )
        return [self._to_domain(row) for row in rows]

    @staticmethod
    def _to_domain(row: ApprovalRule) -> Rule:
        return Rule(
            id=row.id,
            chapter_id=row.chapter_id,
            min_score_threshold=row.min_score_threshold,
            max_attempts=row.max_attempts,
            allow_error_carryover=row.allow_error_carryover,
            is_active=row.is_active,
            metadata=load_json(row.metadata_json),
            description=row.description,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
