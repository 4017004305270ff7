# stepcoin/conftest.py
import pytest

from stepcoin.core.database import create_all_tables, dispose_engine, init_engine
from stepcoin.core.events import hub
from stepcoin.core.metrics import METRICS


@pytest.fixture(scope="function", autouse=True)
def sqlite_db(tmp_path):
    """
    Give every test its own SQLite database file.

    Yields the database URL; the engine is disposed afterwards so pooled
    connections never leak between tests.
    """
    url = f"sqlite:///{tmp_path / 'stepcoin.db'}"
    init_engine(url)
    create_all_tables()
    yield url
    dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def reset_in_memory_state():
    """Clear process-wide state: notification buffers, metrics, rate limit windows."""
    from stepcoin.features.wallet.redemption import redemption_service

    hub.reset()
    METRICS.reset()
    redemption_service.limiter.reset()
    yield
    hub.reset()
    redemption_service.limiter.reset()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from stepcoin.main import app

    return TestClient(app)


@pytest.fixture
def recorded_events():
    """Collect every event published to the hub during the test."""
    events = []
    hub.subscribe(events.append)
    yield events
    hub.unsubscribe(events.append)
