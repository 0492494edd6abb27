"""Pytest configuration and shared fixtures."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import Settings, reset_settings
from approval.models.entities import Base
from approval.repositories import RuleRepository, UserRepository
from approval.services import ApprovalCache, create_approval_services


@pytest.fixture(autouse=True)
def _reset_global_settings():
    """Keep the settings singleton from leaking between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(scope="function")
def db_session():
    """
    Create a test database session with in-memory SQLite.

    This fixture creates a fresh database for each test function,
    ensuring test isolation.
    """
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def settings():
    """Settings with background metrics off so writes are visible immediately."""
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        metrics_async=False,
    )


@pytest.fixture
def cache():
    return ApprovalCache(ttl=300, maxsize=128)


@pytest.fixture
def services(db_session, settings, cache):
    """Engine and rule service wired onto the test session."""
    return create_approval_services(db_session, settings=settings, cache=cache)


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
def rule_service(services):
    return services.rules


@pytest.fixture
def sample_user(db_session):
    return UserRepository(db_session).create("user-1", email="learner@example.com", name="Learner")


@pytest.fixture
def global_rule(db_session):
    """Global rule: 80% threshold, three attempts, carryover on."""
    return RuleRepository(db_session).create({
        "chapter_id": None,
        "min_score_threshold": 80,
        "max_attempts": 3,
        "allow_error_carryover": True,
    })


@pytest.fixture
def file_db(tmp_path, settings):
    """File-backed SQLite database for tests that use worker threads."""
    from database import DatabaseManager

    manager = DatabaseManager(f"sqlite:///{tmp_path / 'approvals.db'}")
    manager.create_tables()
    yield manager
    manager.close()


@pytest.fixture
def threaded_services(file_db, settings):
    """Services bound to a thread-local session, seeded with user-1 and a global rule."""
    db = file_db.scoped_session
    UserRepository(db).create("user-1")
    RuleRepository(db).create({
        "chapter_id": None,
        "min_score_threshold": 80,
        "max_attempts": 3,
        "allow_error_carryover": True,
    })
    return create_approval_services(db, settings=settings)
