"""
Integration tests for the webhook management API.
"""

import pytest
from fastapi.testclient import TestClient

from webhook_events.core.webhooks.signature import SignatureService
from webhook_events.core.webhooks.system import WebhookEventSystem
from webhook_events.main import create_app
from webhook_events.monitoring.metrics import MetricsCollector

API = "/api/v1/webhooks"


def create_subscription(client, **overrides):
    body = {"url": "https://example.com/hook", "events": ["booking.created"]}
    body.update(overrides)
    response = client.post(f"{API}/subscriptions", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def emit(client, event_type="booking.created", **metadata):
    response = client.post(f"{API}/events", json={
        "type": event_type,
        "data": {"booking_id": "b1"},
        "metadata": {"source": "api-test", **metadata},
    })
    assert response.status_code == 202, response.text
    return response.json()["event_id"]


@pytest.mark.integration
class TestSubscriptionsAPI:
    """Test suite for subscription endpoints."""

    def test_create_returns_secret_once(self, test_client):
        created = create_subscription(test_client, metadata={"name": "CRM", "provider": "zapier"})

        assert created["id"].startswith("wh_")
        assert len(created["secret"]) == 64
        assert created["config"]["retry_attempts"] == 3
        assert created["metadata"]["provider"] == "zapier"

        fetched = test_client.get(f"{API}/subscriptions/{created['id']}")
        assert fetched.status_code == 200
        assert "secret" not in fetched.json()

        listed = test_client.get(f"{API}/subscriptions").json()
        assert [s["id"] for s in listed] == [created["id"]]
        assert "secret" not in listed[0]

    def test_create_rejects_invalid_url(self, test_client):
        response = test_client.post(f"{API}/subscriptions", json={"url": "nope", "events": ["booking.created"]})

        assert response.status_code == 422
        data = response.json()
        assert data["error_code"] == "VALIDATION_ERROR"
        assert data["type"] == "webhook_system_error"

    def test_create_rejects_unknown_event(self, test_client):
        response = test_client.post(
            f"{API}/subscriptions", json={"url": "https://example.com/hook", "events": ["booking.exploded"]}
        )

        assert response.status_code == 422
        assert response.json()["type"] == "validation_error"

    def test_list_filters(self, test_client):
        booking = create_subscription(test_client)
        payment = create_subscription(test_client, events=["payment.completed"], active=False)

        active = test_client.get(f"{API}/subscriptions", params={"active": "true"}).json()
        by_event = test_client.get(f"{API}/subscriptions", params={"events": ["payment.completed"]}).json()

        assert [s["id"] for s in active] == [booking["id"]]
        assert [s["id"] for s in by_event] == [payment["id"]]

    def test_update_merges_config(self, test_client):
        created = create_subscription(test_client, config={"retry_attempts": 5})

        response = test_client.patch(
            f"{API}/subscriptions/{created['id']}",
            json={"config": {"timeout": 3}, "active": False},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["active"] is False
        assert data["config"]["timeout"] == 3
        assert data["config"]["retry_attempts"] == 5

    def test_unknown_subscription_is_404(self, test_client):
        for response in [
            test_client.get(f"{API}/subscriptions/wh_missing"),
            test_client.patch(f"{API}/subscriptions/wh_missing", json={"active": True}),
            test_client.delete(f"{API}/subscriptions/wh_missing"),
            test_client.post(f"{API}/subscriptions/wh_missing/test"),
        ]:
            assert response.status_code == 404
            assert response.json()["error_code"] == "NOT_FOUND"

    def test_delete(self, test_client):
        created = create_subscription(test_client)

        assert test_client.delete(f"{API}/subscriptions/{created['id']}").status_code == 204
        assert test_client.get(f"{API}/subscriptions/{created['id']}").status_code == 404

    def test_send_test_event(self, test_client, webhook_system, endpoint):
        created = create_subscription(test_client)

        response = test_client.post(f"{API}/subscriptions/{created['id']}/test")
        assert response.status_code == 202
        assert response.json()["payload"]["test"] is True

        test_client.portal.call(webhook_system.process_deliveries)

        request = endpoint.requests[0]
        assert SignatureService.verify_headers(request.content, request.headers, created["secret"])


@pytest.mark.integration
class TestEventsAPI:
    """Test suite for event endpoints."""

    def test_emit_and_browse(self, test_client):
        first = emit(test_client, resource_id="A")
        second = emit(test_client, "payment.completed")

        events = test_client.get(f"{API}/events").json()
        assert {e["id"] for e in events} == {first, second}

        filtered = test_client.get(f"{API}/events", params={"types": ["payment.completed"]}).json()
        assert [e["id"] for e in filtered] == [second]

        event = test_client.get(f"{API}/events/{first}").json()
        assert event["metadata"]["resource_id"] == "A"
        assert event["metadata"]["environment"] == "test"

    def test_emit_requires_source(self, test_client):
        response = test_client.post(f"{API}/events", json={"type": "booking.created", "metadata": {}})
        assert response.status_code == 422

    def test_unknown_event_is_404(self, test_client):
        assert test_client.get(f"{API}/events/evt_missing").status_code == 404


@pytest.mark.integration
class TestDeliveriesAPI:
    """Test suite for delivery endpoints."""

    def test_delivery_lifecycle_and_manual_retry(self, test_client, webhook_system, endpoint):
        endpoint.respond_with(500)
        subscription = create_subscription(test_client, config={"retry_attempts": 1})
        emit(test_client)

        test_client.portal.call(webhook_system.process_deliveries)

        dead = test_client.get(f"{API}/deliveries", params={"statuses": ["dead_letter"]}).json()
        assert len(dead) == 1
        delivery_id = dead[0]["id"]
        assert dead[0]["subscription_id"] == subscription["id"]
        assert dead[0]["error"]["kind"] == "http_status_error"

        stats = test_client.get(f"{API}/statistics").json()
        assert stats["health"]["dead_letter_queue_size"] == 1
        assert stats["health"]["success_rate"] == 0.0

        retry = test_client.post(f"{API}/deliveries/{delivery_id}/retry")
        assert retry.status_code == 202
        assert retry.json() == {"delivery_id": delivery_id, "queued": True}

        test_client.portal.call(webhook_system.process_deliveries)

        delivery = test_client.get(f"{API}/deliveries/{delivery_id}").json()
        assert delivery["status"] == "delivered"
        assert delivery["attempt_count"] == 1

        conflict = test_client.post(f"{API}/deliveries/{delivery_id}/retry")
        assert conflict.status_code == 409
        assert conflict.json()["error_code"] == "CONFLICT"

    def test_unknown_delivery_is_404(self, test_client):
        assert test_client.get(f"{API}/deliveries/del_missing").status_code == 404
        assert test_client.post(f"{API}/deliveries/del_missing/retry").status_code == 404

    def test_list_filters_by_subscription(self, test_client):
        first = create_subscription(test_client)
        create_subscription(test_client, url="https://other.example.com/hook")
        emit(test_client)

        deliveries = test_client.get(f"{API}/deliveries", params={"subscription_ids": [first["id"]]}).json()
        assert [d["subscription_id"] for d in deliveries] == [first["id"]]


@pytest.mark.integration
class TestHealthAPI:
    """Test suite for health endpoints."""

    def test_root_health(self, test_client):
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["webhook_system_running"] is False

    def test_webhook_health_degrades_on_large_retry_queue(self, test_client, webhook_system):
        assert test_client.get(f"{API}/health").json()["status"] == "healthy"

        webhook_system.settings.WEBHOOK_RETRY_QUEUE_ALERT_SIZE = 1
        create_subscription(test_client)
        emit(test_client)
        emit(test_client)

        health = test_client.get(f"{API}/health").json()
        assert health["status"] == "degraded"
        assert health["retry_queue_size"] == 2
        assert health["warnings"] == ["Large webhook retry queue: 2 deliveries"]

    def test_metrics_summary(self, test_client, webhook_system, endpoint):
        endpoint.respond_with(500)
        create_subscription(test_client, config={"retry_attempts": 1})
        emit(test_client)
        test_client.portal.call(webhook_system.process_deliveries)

        response = test_client.get(f"{API}/metrics")

        assert response.status_code == 200
        summary = response.json()
        assert summary["delivery_attempts"] == 1
        assert summary["successful_attempts"] == 0
        assert summary["counters"]["errors_total"] == 1

    def test_default_app_collects_metrics(self, test_settings):
        app = create_app(settings=test_settings, start_background_tasks=False)

        assert isinstance(app.state.webhook_system.metrics, MetricsCollector)
        with TestClient(app) as client:
            response = client.get(f"{API}/metrics")
        assert response.status_code == 200
        assert response.json()["delivery_attempts"] == 0

    def test_metrics_without_collector_is_404(self, test_settings):
        system = WebhookEventSystem(settings=test_settings)
        app = create_app(system=system, settings=test_settings, start_background_tasks=False)

        with TestClient(app) as client:
            response = client.get(f"{API}/metrics")
        assert response.status_code == 404
