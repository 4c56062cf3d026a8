"""
Pytest configuration and shared fixtures.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from forecast_engine.core.models import Base
from forecast_engine.core.config import Settings, reset_settings
from factories import seed_org


@pytest.fixture(scope="function")
def clean_env(monkeypatch):
    """
    Clean environment for testing.

    Removes all engine-related env vars to ensure clean state.
    """
    env_vars = [
        "DATABASE_URL",
        "MAX_CONCURRENCY",
        "LOG_LEVEL",
        "DEFAULT_COMMIT_PROBABILITY",
        "DEFAULT_BEST_CASE_PROBABILITY",
        "DEFAULT_PIPELINE_PROBABILITY",
        "HEALTH_SCORE_MAX",
        "COVERAGE_AT_RISK_BELOW",
        "COVERAGE_HEALTHY_AT",
        "PARTNER_PROMISE_MIN_CLOSED",
        "TOP_PRODUCTS_LIMIT",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)

    # Reset settings singleton
    reset_settings()

    yield

    # Reset again after test
    reset_settings()


@pytest.fixture
def settings(clean_env):
    """Default settings, ignoring any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture(scope="function")
def test_db():
    """
    Create an in-memory SQLite database for testing.

    Fresh database for each test.
    """
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seeded_db(test_db):
    """Org 1 rep tree plus FY25 Q1/Q2 periods (see factories.seed_org)."""
    seed_org(test_db)
    return test_db
