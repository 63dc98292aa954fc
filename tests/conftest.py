"""
Pytest configuration and shared fixtures for webhook event system testing.
"""

from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest
from fastapi.testclient import TestClient
from loguru import logger

from webhook_events.core.config import Settings
from webhook_events.core.scheduling import ManualClock
from webhook_events.core.webhooks.system import WebhookEventSystem
from webhook_events.main import create_app
from webhook_events.monitoring.metrics import MetricsCollector

Outcome = Union[int, Exception, Callable[[httpx.Request], Any]]


class RecordingEndpoint:
    """
    Stand-in for a subscriber's HTTP endpoint.

    ``outcomes`` is consumed one per request: an int is a status code, an
    exception is raised, a callable is invoked with the request. Once it is
    exhausted every request gets ``default_status``.
    """

    def __init__(self, default_status: int = 200):
        self.default_status = default_status
        self.outcomes: List[Outcome] = []
        self.requests: List[httpx.Request] = []

    def respond_with(self, *outcomes: Outcome) -> None:
        self.outcomes.extend(outcomes)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default_status

        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return await outcome(request)
        return httpx.Response(outcome, json={"received": True})


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, ENVIRONMENT="test", LOG_LEVEL="DEBUG")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def endpoint() -> RecordingEndpoint:
    return RecordingEndpoint()


@pytest.fixture
def http_client(endpoint) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(endpoint.handler))


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector(max_samples=100)


@pytest.fixture
def webhook_system(test_settings, clock, http_client, metrics) -> WebhookEventSystem:
    """A webhook system with a manual clock, no jitter and a mocked HTTP endpoint."""
    return WebhookEventSystem(
        settings=test_settings,
        clock=clock,
        http_client=http_client,
        metrics=metrics,
        jitter=lambda: 0.0,
    )


@pytest.fixture
def test_client(webhook_system, test_settings):
    """API client over an app whose background loops are not started."""
    app = create_app(system=webhook_system, settings=test_settings, start_background_tasks=False)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def log_messages():
    """Capture loguru output as ``LEVEL:message`` strings."""
    messages: List[str] = []
    handler_id = logger.add(lambda message: messages.append(str(message).rstrip("\n")), format="{level}:{message}")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def event_metadata() -> Dict[str, Optional[str]]:
    return {"source": "booking-service", "resource_id": "res_001", "user_id": "user_001"}


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
