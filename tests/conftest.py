"""Shared test fixtures for the Compass test suite."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from compass.app import create_app
from compass.config import Settings
from compass.container import Sources, build_services
from compass.services.collector import RateLimitedCollector
from compass.store import database
from tests.fakes import FakeCatalog, FakeCostSource, FakeIdentity, FakeProbe, environment


def _test_settings() -> Settings:
    """Return settings suitable for testing."""
    return Settings(
        environment="development",
        debug=True,
        log_format="console",
        rate_limit_default="1000/minute",
        allowed_origins="http://localhost:3000,http://localhost:5015",
        collector_min_interval_seconds=0.0,
        cost_stagger_seconds=0.0,
        sweep_interval_seconds=3600.0,
        shutdown_grace_seconds=5.0,
    )


@pytest.fixture
def settings():
    """Test settings."""
    return _test_settings()


@pytest.fixture(autouse=True)
def reset_store():
    """Reset the global in-memory database before each test."""
    database.reset()
    yield
    database.reset()


@pytest.fixture
def collector():
    """Collector without pacing, so tests run instantly."""
    return RateLimitedCollector(max_concurrency=2, min_interval=0.0)


@pytest.fixture
def sources():
    """Fake data sources with an empty inventory and working delegation."""
    return Sources(
        catalog=FakeCatalog(),
        identity=FakeIdentity(),
        costs=FakeCostSource(),
        probe=FakeProbe(),
    )


@pytest.fixture
def services(settings, sources):
    return build_services(settings, sources=sources, session_factory=database.session)


@pytest.fixture
def app(settings, services):
    """Create a fresh FastAPI app for testing."""
    return create_app(settings, services)


@pytest.fixture
def client(app):
    """HTTP test client with the lifespan running."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sample_environment():
    """Register an environment for org-1 in the in-memory database."""
    env = environment()
    database.add_environment(env)
    return env
