"""Selects the rule that governs an evaluation and its effective threshold."""
import logging
from dataclasses import dataclass
from typing import Optional

from config import Settings, get_settings
from approval.exceptions import RuleNotFoundError
from approval.models.domain import Rule
from approval.repositories.base import RuleStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedRule:
    rule: Rule
    effective_threshold: float
    is_critical: bool


class RuleResolver:
    """
    Picks the governing rule for a chapter.

    Chapter-scoped rules win over global ones, the oldest active rule of the
    winning scope governs, and critical chapters always use the critical
    threshold regardless of what the rule stores.
    """

    def __init__(self, rule_store: RuleStore, settings: Optional[Settings] = None):
        self.rule_store = rule_store
        self.settings = settings or get_settings()

    def is_critical_chapter(self, chapter_id: Optional[str]) -> bool:
        return chapter_id is not None and chapter_id in self.settings.critical_chapters

    def resolve(self, chapter_id: str) -> ResolvedRule:
        """
        Resolve the rule for a chapter.

        Raises:
            RuleNotFoundError: If neither a chapter nor a global rule is active
        """
        rules = self.rule_store.find_applicable(chapter_id)
        if not rules:
            raise RuleNotFoundError(chapter_id=chapter_id)

        rule = rules[0]
        if len(rules) > 1:
            logger.debug(
                f"{len(rules)} active rules match chapter {chapter_id}, using {rule.id}"
            )

        critical = self.is_critical_chapter(chapter_id)
        return ResolvedRule(
            rule=rule,
            effective_threshold=self.effective_threshold(rule, critical),
            is_critical=critical,
        )

    def effective_threshold(self, rule: Rule, critical: bool) -> float:
        if critical:
            return self.settings.critical_threshold
        # A stored threshold of 0 counts as unset
        return rule.min_score_threshold or self.settings.default_score_threshold
