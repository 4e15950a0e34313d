"""Configure pytest fixtures and environment for testimony digest tests."""

from datetime import datetime, timezone

import pytest
from dotenv import load_dotenv

from testimony_digest.core import config as config_module
from testimony_digest.core.config import DigestConfig, Settings
from testimony_digest.data.db import create_engine_for_url, init_db


def pytest_sessionstart(session):
    """Load environment variables from a local .env if present."""
    load_dotenv()


@pytest.fixture(autouse=True)
def reset_global_settings():
    """Drop the cached global settings between tests."""
    config_module.settings = None
    yield
    config_module.settings = None


@pytest.fixture
def reference_instant():
    """A Tuesday at midnight UTC."""
    return datetime(2024, 3, 5, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    """Settings with explicit, environment-independent values."""
    return Settings(
        ENVIRONMENT="test",
        DRY_RUN=False,
        MAX_WORKERS=4,
        digest=DigestConfig(
            DIGEST_SUBJECT="Your Notifications Digest",
            DIGEST_SITE_URL="https://mapletestimony.org",
        ),
    )


@pytest.fixture
def engine():
    """In-memory database with all tables created."""
    engine = create_engine_for_url("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()
