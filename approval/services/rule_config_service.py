"""
Rule Configuration Service

Administrative operations on approval rules. Every mutation invalidates the
shared cache before returning and notifies registered listeners.
"""
import logging
from typing import Callable, List, Optional

from config import Settings, get_settings
from approval.constants import RULES_CACHE_PREFIX
from approval.exceptions import RuleNotFoundError
from approval.models.domain import Rule
from approval.models.schemas import (
    ConfigureRuleRequest,
    DeleteRuleResult,
    RuleResponse,
    UpdateRuleRequest,
)
from approval.repositories.base import EvaluationStore, RuleStore
from .cache import ApprovalCache
from .validation import validate_rule_configuration, validate_rule_update

logger = logging.getLogger(__name__)

# listener(event, rule_id); event is one of created/updated/deleted/activated/deactivated
RuleChangeListener = Callable[[str, str], None]


class RuleConfigService:
    """Create, update, list and retire approval rules."""

    def __init__(self, rule_store: RuleStore, evaluation_store: EvaluationStore,
                 cache: Optional[ApprovalCache] = None,
                 settings: Optional[Settings] = None,
                 listeners: Optional[List[RuleChangeListener]] = None):
        self.rule_store = rule_store
        self.evaluation_store = evaluation_store
        self.settings = settings or get_settings()
        self.cache = cache or ApprovalCache(
            ttl=self.settings.cache_ttl_seconds, maxsize=self.settings.cache_max_entries
        )
        self._listeners: List[RuleChangeListener] = list(listeners or [])

    def add_listener(self, listener: RuleChangeListener) -> None:
        self._listeners.append(listener)

    def configure_rule(self, request: ConfigureRuleRequest) -> RuleResponse:
        """
        Create a rule, or update the active rule already covering its scope.

        Args:
            request: Rule settings; chapter_id None configures the global rule

        Returns:
            The created or updated rule

        Raises:
            ApprovalValidationError: If thresholds or attempts are out of range
        """
        validate_rule_configuration(
            request, self.settings.critical_chapters, self.settings.critical_threshold
        )

        fields = {
            "chapter_id": request.chapter_id,
            "min_score_threshold": request.min_score_threshold,
            "max_attempts": request.max_attempts,
            "allow_error_carryover": request.allow_error_carryover,
            "is_active": request.is_active,
            "metadata": request.special_requirements,
            "description": request.description,
        }

        existing = self._existing_rule(request.chapter_id)
        if existing:
            fields.pop("chapter_id")
            rule = self.rule_store.update(existing.id, fields)
            event = "updated"
        else:
            rule = self.rule_store.create(fields)
            event = "created"

        logger.info(
            f"Rule {rule.id} {event} for {self._scope(rule.chapter_id)}: "
            f"threshold={rule.min_score_threshold}, max_attempts={rule.max_attempts}"
        )
        self._rule_changed(event, rule.id)
        return RuleResponse.from_rule(rule)

    def update_rule(self, rule_id: str, request: UpdateRuleRequest) -> RuleResponse:
        """Apply only the fields the caller set."""
        rule = self._get_rule(rule_id)

        fields = request.model_dump(exclude_unset=True)
        if "special_requirements" in fields:
            fields["metadata"] = fields.pop("special_requirements")

        validate_rule_update(
            fields, rule.chapter_id,
            self.settings.critical_chapters, self.settings.critical_threshold,
        )

        updated = self.rule_store.update(rule_id, fields)
        logger.info(f"Rule {rule_id} updated: {sorted(fields)}")
        self._rule_changed("updated", rule_id)
        return RuleResponse.from_rule(updated)

    def get_rule(self, rule_id: str) -> RuleResponse:
        return RuleResponse.from_rule(self._get_rule(rule_id))

    def list_rules(self, chapter_id: Optional[str] = None,
                   is_active: Optional[bool] = None) -> List[RuleResponse]:
        """
        List active rules for a chapter, or every active rule. Cached.

        is_active filters the listing afterwards, so only True or None can
        match anything.
        """
        key = self._list_cache_key(chapter_id, is_active)
        rules = self.cache.get_or_load(key, lambda: self._load_rules(chapter_id))
        if is_active is not None:
            rules = [rule for rule in rules if rule.is_active == is_active]
        return [RuleResponse.from_rule(rule) for rule in rules]

    def delete_rule(self, rule_id: str) -> DeleteRuleResult:
        """
        Delete a rule that no evaluation references.

        Rules referenced by evaluations are deactivated instead, since the
        evaluation history must keep pointing at them.
        """
        self._get_rule(rule_id)

        if self.evaluation_store.count_by_rule(rule_id) > 0:
            self.rule_store.deactivate(rule_id)
            logger.info(f"Rule {rule_id} is referenced by evaluations, deactivated instead")
            self._rule_changed("deactivated", rule_id)
            return DeleteRuleResult(rule_id=rule_id, deactivated=True)

        self.rule_store.delete(rule_id)
        logger.info(f"Rule {rule_id} deleted")
        self._rule_changed("deleted", rule_id)
        return DeleteRuleResult(rule_id=rule_id, deactivated=False)

    def activate_rule(self, rule_id: str) -> RuleResponse:
        rule = self.rule_store.activate(rule_id)
        self._rule_changed("activated", rule_id)
        return RuleResponse.from_rule(rule)

    def deactivate_rule(self, rule_id: str) -> RuleResponse:
        rule = self.rule_store.deactivate(rule_id)
        self._rule_changed("deactivated", rule_id)
        return RuleResponse.from_rule(rule)

    def _load_rules(self, chapter_id: Optional[str]) -> List[Rule]:
        if chapter_id:
            return self.rule_store.find_by_chapter(chapter_id)
        return self.rule_store.find_active()

    def _get_rule(self, rule_id: str) -> Rule:
        rule = self.rule_store.find_by_id(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id=rule_id)
        return rule

    def _existing_rule(self, chapter_id: Optional[str]) -> Optional[Rule]:
        if chapter_id is None:
            rules = self.rule_store.find_global()
        else:
            rules = self.rule_store.find_by_chapter(chapter_id)
        return rules[0] if rules else None

    def _rule_changed(self, event: str, rule_id: str) -> None:
        # Chapter stats depend on rules too, so drop everything
        self.cache.invalidate()
        for listener in self._listeners:
            try:
                listener(event, rule_id)
            except Exception as e:
                logger.warning(f"Rule change listener failed for {event} {rule_id}: {e}")

    @staticmethod
    def _list_cache_key(chapter_id: Optional[str], is_active: Optional[bool]) -> str:
        active = "any" if is_active is None else str(is_active).lower()
        return f"{RULES_CACHE_PREFIX}:{chapter_id or 'all'}:{active}"

    @staticmethod
    def _scope(chapter_id: Optional[str]) -> str:
        return f"chapter {chapter_id}" if chapter_id else "all chapters"
