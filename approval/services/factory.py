"""Wiring of the engine and rule service onto the SQLAlchemy repositories."""
from typing import Callable, NamedTuple, Optional, Union

from sqlalchemy.orm import Session as DBSession, scoped_session

from config import Settings, get_settings
from approval.repositories import (
    EvaluationRepository,
    MetricsRepository,
    RuleRepository,
    UserRepository,
)
from .cache import ApprovalCache
from .evaluation_service import ApprovalEngine
from .key_lock import KeyedLock
from .rule_config_service import RuleConfigService


class ApprovalServices(NamedTuple):
    engine: ApprovalEngine
    rules: RuleConfigService
    cache: ApprovalCache


def create_approval_services(db: Union[DBSession, scoped_session],
                             settings: Optional[Settings] = None,
                             cache: Optional[ApprovalCache] = None,
                             key_lock: Optional[KeyedLock] = None,
                             session_factory: Optional[Callable[[], DBSession]] = None,
                             ) -> ApprovalServices:
    """
    Build an engine and a rule service that share one cache.

    Pass ``DatabaseManager.scoped_session`` when batch evaluation is used, so
    each thread gets its own session. With a plain session, background
    metrics need ``session_factory`` (e.g. ``DatabaseManager.session_factory``);
    without one they are written synchronously.
    """
    settings = settings or get_settings()
    cache = cache or ApprovalCache(
        ttl=settings.cache_ttl_seconds, maxsize=settings.cache_max_entries
    )
    rule_store = RuleRepository(db)
    evaluation_store = EvaluationRepository(db)

    engine = ApprovalEngine(
        rule_store=rule_store,
        evaluation_store=evaluation_store,
        metrics_sink=MetricsRepository(db, session_factory=session_factory),
        user_directory=UserRepository(db),
        settings=settings,
        cache=cache,
        key_lock=key_lock,
    )
    rules = RuleConfigService(rule_store, evaluation_store, cache=cache, settings=settings)
    return ApprovalServices(engine=engine, rules=rules, cache=cache)
