import pytest
from unittest.mock import AsyncMock, Mock

from rapidaid.core.engine import ReconciliationEngine
from rapidaid.core.store import AlertStore
from rapidaid.services.push import PushSource


@pytest.fixture
def store():
    return AlertStore()


@pytest.fixture
def poll_source():
    """PollSource double whose snapshot is set per test via fetch_snapshot.return_value"""
    source = Mock()
    source.fetch_snapshot = AsyncMock(return_value=[])
    source.fetch_alert = AsyncMock()
    source.backend = Mock()
    source.backend.update_alert_status = AsyncMock(return_value={})
    return source


@pytest.fixture
def alerter():
    mock_alerter = Mock()
    mock_alerter.play = AsyncMock(return_value=True)
    return mock_alerter


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def engine(store, poll_source, alerter, notifier):
    """
    Engine wired to test doubles. Push-triggered refresh is off so tests
    control exactly when polls happen.
    """
    return ReconciliationEngine(
        store=store,
        poll_source=poll_source,
        push_source=PushSource(),
        alerter=alerter,
        notifier=notifier,
        poll_interval=0.05,
        refresh_on_push=False,
    )


@pytest.fixture
def api_key(monkeypatch):
    """Configures the server API key for the duration of a test"""
    monkeypatch.setenv("API_KEY", "test-key")
    return "test-key"
