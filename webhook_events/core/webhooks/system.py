"""
WebhookEventSystem: wires the registry, emitter, dispatcher and health
monitor together and owns their background loops.
"""

from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

import httpx
from loguru import logger

from webhook_events.core.config import Settings, get_settings
from webhook_events.core.scheduling import Clock, PeriodicTask, SystemClock
from webhook_events.monitoring.metrics import MetricsSink

from .dispatcher import DeliveryDispatcher, default_jitter
from .emitter import EventEmitter, EventHistory
from .health import HealthMonitor
from .models import (
    DeliveryQuery,
    EventMetadata,
    EventQuery,
    EventType,
    SubscriptionConfig,
    SubscriptionFilters,
    SubscriptionMetadata,
    SubscriptionQuery,
    SubscriptionUpdate,
    WebhookDelivery,
    WebhookEventPayload,
    WebhookStats,
    WebhookSubscription,
)
from .queue import RetryQueue
from .registry import SubscriptionRegistry
from .store import (
    DeliveryStore,
    InMemoryDeliveryStore,
    InMemorySubscriptionStore,
    SubscriptionStore,
)


class WebhookEventSystem:
    """
    Outbound webhook system.

    Events emitted through :meth:`emit_event` are matched against the
    registered subscriptions; each match becomes a signed delivery that the
    dispatcher loop sends and retries with exponential backoff. A second
    loop checks health and applies delivery retention.

    All collaborators are injectable. Tests typically pass a
    ``ManualClock`` and an ``httpx.AsyncClient`` on a ``MockTransport``,
    then drive the loops with :meth:`process_deliveries` and
    :meth:`run_health_check` instead of calling :meth:`start`.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        subscription_store: Optional[SubscriptionStore] = None,
        delivery_store: Optional[DeliveryStore] = None,
        clock: Optional[Clock] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsSink] = None,
        jitter: Callable[[], float] = default_jitter,
    ):
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.subscription_store = subscription_store or InMemorySubscriptionStore()
        self.delivery_store = delivery_store or InMemoryDeliveryStore()
        self.retry_queue = RetryQueue()
        self.history = EventHistory(self.settings.WEBHOOK_EVENT_HISTORY_LIMIT)

        self.registry = SubscriptionRegistry(
            self.subscription_store, self.retry_queue, self.settings, self.clock, metrics=metrics
        )
        self.emitter = EventEmitter(
            self.registry,
            self.delivery_store,
            self.retry_queue,
            self.history,
            self.settings,
            self.clock,
            metrics=metrics,
        )
        self.dispatcher = DeliveryDispatcher(
            self.subscription_store,
            self.delivery_store,
            self.retry_queue,
            self.settings,
            self.clock,
            client=http_client,
            metrics=metrics,
            jitter=jitter,
        )
        self.health = HealthMonitor(
            self.subscription_store,
            self.delivery_store,
            self.history,
            self.retry_queue,
            self.settings,
            self.clock,
        )

        self._dispatch_task = PeriodicTask(
            "webhook-dispatcher",
            self.dispatcher.process_due,
            self.settings.WEBHOOK_DISPATCH_INTERVAL_SECONDS,
        )
        self._health_task = PeriodicTask(
            "webhook-health-check",
            self.health.run_check,
            self.settings.WEBHOOK_HEALTH_CHECK_INTERVAL_SECONDS,
        )

    @property
    def is_running(self) -> bool:
        return self._dispatch_task.is_running

    def start(self) -> None:
        """Start the dispatcher and health-check loops."""
        self._dispatch_task.start()
        self._health_task.start()
        logger.info("Webhook event system started")

    async def stop(self) -> None:
        """Stop both loops and release the HTTP client."""
        await self._dispatch_task.stop()
        await self._health_task.stop()
        await self.dispatcher.close()
        logger.info("Webhook event system stopped")

    async def process_deliveries(self) -> bool:
        """Run one dispatcher tick now. ``False`` if a tick is already running."""
        return await self._dispatch_task.run_once()

    async def run_health_check(self) -> bool:
        """Run one health tick now. ``False`` if a tick is already running."""
        return await self._health_task.run_once()

    # Subscriptions

    async def register_subscription(
        self,
        url: str,
        events: Sequence[Union[EventType, str]],
        config: Optional[Union[SubscriptionConfig, Mapping[str, Any]]] = None,
        filters: Optional[Union[SubscriptionFilters, Mapping[str, Any]]] = None,
        metadata: Optional[Union[SubscriptionMetadata, Mapping[str, Any]]] = None,
        active: bool = True,
    ) -> WebhookSubscription:
        return await self.registry.register(
            url, events, config=config, filters=filters, metadata=metadata, active=active
        )

    async def update_subscription(
        self, subscription_id: str, patch: Union[SubscriptionUpdate, Mapping[str, Any]]
    ) -> bool:
        return await self.registry.update(subscription_id, patch)

    async def remove_subscription(self, subscription_id: str) -> bool:
        return await self.registry.remove(subscription_id)

    async def get_subscription(self, subscription_id: str) -> Optional[WebhookSubscription]:
        return await self.registry.get(subscription_id)

    async def list_subscriptions(
        self, query: Optional[Union[SubscriptionQuery, Mapping[str, Any]]] = None
    ) -> List[WebhookSubscription]:
        return await self.registry.list(query)

    # Events

    async def emit_event(
        self,
        event_type: Union[EventType, str],
        data: Any,
        metadata: Union[EventMetadata, Mapping[str, Any]],
    ) -> str:
        return await self.emitter.emit(event_type, data, metadata)

    def get_event(self, event_id: str) -> Optional[WebhookEventPayload]:
        return self.emitter.get_event(event_id)

    def list_events(
        self, query: Optional[Union[EventQuery, Mapping[str, Any]]] = None
    ) -> List[WebhookEventPayload]:
        return self.emitter.list_events(query)

    async def send_test_event(self, subscription_id: str) -> Optional[WebhookDelivery]:
        return await self.emitter.send_test_event(subscription_id)

    # Deliveries

    async def get_delivery(self, delivery_id: str) -> Optional[WebhookDelivery]:
        return await self.dispatcher.get_delivery(delivery_id)

    async def list_deliveries(
        self, query: Optional[Union[DeliveryQuery, Mapping[str, Any]]] = None
    ) -> List[WebhookDelivery]:
        return await self.dispatcher.list_deliveries(query)

    async def retry_delivery(self, delivery_id: str) -> bool:
        return await self.dispatcher.retry_delivery(delivery_id)

    # Health

    async def get_statistics(self) -> WebhookStats:
        return await self.health.statistics()
