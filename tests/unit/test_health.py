"""
Unit tests for webhook statistics and health checks.
"""

from datetime import timedelta

import pytest

from webhook_events.core.webhooks.models import DeliveryStatus


@pytest.mark.unit
class TestStatistics:
    """Test suite for HealthMonitor.statistics."""

    @pytest.mark.asyncio
    async def test_empty_system(self, webhook_system, clock):
        stats = await webhook_system.get_statistics()

        assert stats.generated_at == clock.now()
        assert stats.subscriptions.total == 0
        assert stats.deliveries.total == 0
        assert stats.events.total == 0
        assert stats.events.top_events == []
        assert stats.health.success_rate == 100.0
        assert stats.health.avg_delivery_time_ms == 0.0
        assert stats.health.retry_queue_size == 0
        assert stats.health.dead_letter_queue_size == 0

    @pytest.mark.asyncio
    async def test_counts_and_success_rate(self, webhook_system, endpoint):
        endpoint.respond_with(500, 200, 200)
        await webhook_system.register_subscription(
            "https://example.com/hook", ["booking.created", "payment.completed"], config={"retry_attempts": 1}
        )
        await webhook_system.register_subscription("https://example.com/idle", ["quote.sent"], active=False)

        for event_type in ["booking.created", "booking.created", "payment.completed"]:
            await webhook_system.emit_event(event_type, {}, {"source": "test"})
        await webhook_system.process_deliveries()
        await webhook_system.emit_event("booking.created", {}, {"source": "test"})

        stats = await webhook_system.get_statistics()

        assert stats.subscriptions.total == 2
        assert stats.subscriptions.active == 1
        assert stats.subscriptions.inactive == 1
        assert stats.deliveries.total == 4
        assert stats.deliveries.delivered == 2
        assert stats.deliveries.dead_letter == 1
        assert stats.deliveries.failed == 1
        assert stats.deliveries.pending == 1
        assert stats.deliveries.by_status == {"delivered": 2, "dead_letter": 1, "pending": 1}
        assert stats.health.success_rate == 66.67
        assert stats.health.retry_queue_size == 1
        assert stats.health.dead_letter_queue_size == 1
        assert stats.events.total == 4
        assert stats.events.recent_count == 4
        assert stats.events.top_events[0].type == "booking.created"
        assert stats.events.top_events[0].count == 3

    @pytest.mark.asyncio
    async def test_recent_events_window(self, webhook_system, clock):
        await webhook_system.emit_event("booking.created", {}, {"source": "test"})
        clock.advance(hours=25)
        await webhook_system.emit_event("booking.created", {}, {"source": "test"})

        stats = await webhook_system.get_statistics()
        assert stats.events.total == 2
        assert stats.events.recent_count == 1

    @pytest.mark.asyncio
    async def test_top_events_limited_to_ten(self, webhook_system):
        event_types = [
            "booking.created", "booking.updated", "booking.confirmed", "booking.cancelled",
            "booking.completed", "payment.initiated", "payment.completed", "payment.failed",
            "payment.refunded", "quote.sent", "quote.accepted", "quote.rejected",
        ]
        for event_type in event_types:
            await webhook_system.emit_event(event_type, {}, {"source": "test"})

        stats = await webhook_system.get_statistics()
        assert len(stats.events.top_events) == 10


@pytest.mark.unit
class TestHealthCheck:
    """Test suite for health warnings and retention."""

    @pytest.mark.asyncio
    async def test_healthy_system_has_no_warnings(self, webhook_system):
        assert await webhook_system.health.check_health() == []

    @pytest.mark.asyncio
    async def test_low_success_rate_warning(self, webhook_system, endpoint, log_messages):
        endpoint.default_status = 500
        await webhook_system.register_subscription(
            "https://example.com/hook", ["booking.created"], config={"retry_attempts": 1}
        )

        for _ in range(11):
            await webhook_system.emit_event("booking.created", {}, {"source": "test"})
        await webhook_system.process_deliveries()

        warnings = await webhook_system.health.check_health()

        assert warnings == ["Low webhook success rate: 0.0%"]
        assert any(m.startswith("WARNING:Low webhook success rate") for m in log_messages)

    @pytest.mark.asyncio
    async def test_success_rate_needs_enough_deliveries(self, webhook_system, endpoint):
        endpoint.default_status = 500
        await webhook_system.register_subscription(
            "https://example.com/hook", ["booking.created"], config={"retry_attempts": 1}
        )
        for _ in range(3):
            await webhook_system.emit_event("booking.created", {}, {"source": "test"})
        await webhook_system.process_deliveries()

        assert await webhook_system.health.check_health() == []

    @pytest.mark.asyncio
    async def test_retry_queue_warning(self, webhook_system):
        webhook_system.settings.WEBHOOK_RETRY_QUEUE_ALERT_SIZE = 2
        await webhook_system.register_subscription("https://example.com/hook", ["booking.created"])
        for _ in range(3):
            await webhook_system.emit_event("booking.created", {}, {"source": "test"})

        warnings = await webhook_system.health.check_health()
        assert warnings == ["Large webhook retry queue: 3 deliveries"]

    @pytest.mark.asyncio
    async def test_health_tick_purges_expired_deliveries(self, webhook_system, clock):
        await webhook_system.register_subscription("https://example.com/hook", ["booking.created"])
        await webhook_system.emit_event("booking.created", {}, {"source": "test"})
        await webhook_system.process_deliveries()
        await webhook_system.emit_event("booking.created", {}, {"source": "test"})

        clock.advance(days=webhook_system.settings.WEBHOOK_DELIVERY_RETENTION_DAYS + 1)
        assert await webhook_system.run_health_check() is True

        remaining = await webhook_system.list_deliveries()
        assert [d.status for d in remaining] == [DeliveryStatus.PENDING]

    @pytest.mark.asyncio
    async def test_recent_deliveries_survive_purge(self, webhook_system, clock):
        await webhook_system.register_subscription("https://example.com/hook", ["booking.created"])
        await webhook_system.emit_event("booking.created", {}, {"source": "test"})
        await webhook_system.process_deliveries()

        clock.advance(days=1)
        assert await webhook_system.health.purge_expired() == 0
        assert len(await webhook_system.list_deliveries()) == 1
        assert clock.now() - (await webhook_system.list_deliveries())[0].updated_at == timedelta(days=1)
