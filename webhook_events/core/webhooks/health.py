"""
Webhook statistics and periodic health checks.
"""

from collections import Counter
from datetime import timedelta
from typing import List

from loguru import logger

from webhook_events.core.config import Settings
from webhook_events.core.scheduling import Clock

from .emitter import EventHistory
from .models import (
    DeliveryCounts,
    DeliveryStatus,
    EventCounts,
    EventTypeCount,
    HealthSummary,
    SubscriptionCounts,
    WebhookStats,
)
from .queue import RetryQueue
from .store import DeliveryStore, SubscriptionStore

TOP_EVENT_TYPES = 10


class HealthMonitor:
    """Aggregates delivery statistics and raises health warnings."""

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        deliveries: DeliveryStore,
        history: EventHistory,
        retry_queue: RetryQueue,
        settings: Settings,
        clock: Clock,
    ):
        self._subscriptions = subscriptions
        self._deliveries = deliveries
        self._history = history
        self._retry_queue = retry_queue
        self._settings = settings
        self._clock = clock

    async def statistics(self) -> WebhookStats:
        now = self._clock.now()
        subscriptions = await self._subscriptions.list()
        deliveries = await self._deliveries.list()
        events = self._history.values()

        active = sum(1 for s in subscriptions if s.active)

        by_status = Counter(d.status.value for d in deliveries)
        delivered = by_status[DeliveryStatus.DELIVERED.value]
        dead_letter = by_status[DeliveryStatus.DEAD_LETTER.value]
        finished = delivered + dead_letter
        success_rate = round(delivered / finished * 100, 2) if finished else 100.0

        durations = [
            d.metrics.request_duration_ms
            for d in deliveries
            if d.status == DeliveryStatus.DELIVERED and d.metrics.request_duration_ms is not None
        ]
        avg_delivery_time = round(sum(durations) / len(durations), 2) if durations else 0.0

        type_counts = Counter(e.type.value for e in events)
        recent_cutoff = now - timedelta(hours=24)

        return WebhookStats(
            generated_at=now,
            subscriptions=SubscriptionCounts(
                total=len(subscriptions),
                active=active,
                inactive=len(subscriptions) - active,
            ),
            deliveries=DeliveryCounts(
                total=len(deliveries),
                delivered=delivered,
                failed=dead_letter + by_status[DeliveryStatus.CANCELLED.value],
                pending=by_status[DeliveryStatus.PENDING.value] + by_status[DeliveryStatus.DELIVERING.value],
                dead_letter=dead_letter,
                by_status=dict(by_status),
            ),
            events=EventCounts(
                total=len(events),
                recent_count=sum(1 for e in events if e.timestamp >= recent_cutoff),
                top_events=[
                    EventTypeCount(type=event_type, count=count)
                    for event_type, count in type_counts.most_common(TOP_EVENT_TYPES)
                ],
            ),
            health=HealthSummary(
                success_rate=success_rate,
                avg_delivery_time_ms=avg_delivery_time,
                retry_queue_size=len(self._retry_queue),
                dead_letter_queue_size=dead_letter,
            ),
        )

    def warnings_for(self, stats: WebhookStats) -> List[str]:
        """Health warnings for a statistics snapshot; empty when healthy."""
        warnings = []

        if (
            stats.health.success_rate < self._settings.WEBHOOK_SUCCESS_RATE_THRESHOLD
            and stats.deliveries.total > self._settings.WEBHOOK_SUCCESS_RATE_MIN_DELIVERIES
        ):
            warnings.append(f"Low webhook success rate: {stats.health.success_rate}%")

        if stats.health.retry_queue_size > self._settings.WEBHOOK_RETRY_QUEUE_ALERT_SIZE:
            warnings.append(f"Large webhook retry queue: {stats.health.retry_queue_size} deliveries")

        return warnings

    async def check_health(self) -> List[str]:
        """Log a statistics snapshot and return any health warnings."""
        stats = await self.statistics()

        logger.info(
            f"Webhook system health: {stats.subscriptions.active}/{stats.subscriptions.total} active subscriptions, "
            f"{stats.deliveries.total} deliveries, success rate {stats.health.success_rate}%, "
            f"retry queue {stats.health.retry_queue_size}, dead letter {stats.health.dead_letter_queue_size}"
        )

        warnings = self.warnings_for(stats)
        for warning in warnings:
            logger.warning(warning)
        return warnings

    async def purge_expired(self) -> int:
        """Delete finished deliveries older than the retention window."""
        cutoff = self._clock.now() - timedelta(days=self._settings.WEBHOOK_DELIVERY_RETENTION_DAYS)
        removed = await self._deliveries.delete_finished_before(cutoff)
        if removed:
            logger.info(f"Purged {removed} finished webhook deliveries older than {cutoff.isoformat()}")
        else:
            logger.debug("No expired webhook deliveries to purge")
        return removed

    async def run_check(self) -> List[str]:
        """One health tick: check, then apply delivery retention."""
        warnings = await self.check_health()
        await self.purge_expired()
        return warnings
