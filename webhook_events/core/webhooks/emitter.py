"""
Event emission: payload construction, bounded history and delivery creation.
"""

from typing import Any, Dict, List, Mapping, Optional, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from webhook_events.core.config import Settings
from webhook_events.core.scheduling import Clock
from webhook_events.monitoring.metrics import MetricsSink, report_request
from webhook_events.utils.exceptions import ValidationError

from .models import (
    DeliveryMetrics,
    DeliveryStatus,
    EventMetadata,
    EventQuery,
    EventType,
    WebhookDelivery,
    WebhookEventPayload,
    WebhookSubscription,
    new_id,
)
from .queue import RetryQueue
from .registry import SubscriptionRegistry
from .signature import SignatureService
from .store import DeliveryStore


class EventHistory:
    """
    Time-ordered archive of emitted events.

    Once the archive grows past ``limit`` the oldest tenth of ``limit`` is
    evicted in one go.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self._events: Dict[str, WebhookEventPayload] = {}

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._events

    def add(self, payload: WebhookEventPayload) -> None:
        self._events[payload.id] = payload
        if len(self._events) > self.limit:
            self._evict()

    def _evict(self) -> None:
        to_remove = max(1, int(self.limit * 0.1))
        oldest = sorted(self._events.values(), key=lambda event: event.timestamp)[:to_remove]
        for event in oldest:
            del self._events[event.id]
        logger.debug(f"Event history trimmed by {len(oldest)} events (limit {self.limit})")

    def get(self, event_id: str) -> Optional[WebhookEventPayload]:
        return self._events.get(event_id)

    def values(self) -> List[WebhookEventPayload]:
        return list(self._events.values())


class EventEmitter:
    """Turns domain events into archived payloads and queued deliveries."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        deliveries: DeliveryStore,
        retry_queue: RetryQueue,
        history: EventHistory,
        settings: Settings,
        clock: Clock,
        metrics: Optional[MetricsSink] = None,
    ):
        self._registry = registry
        self._deliveries = deliveries
        self._retry_queue = retry_queue
        self.history = history
        self._settings = settings
        self._clock = clock
        self._metrics = metrics

    def _build_payload(
        self,
        event_type: Union[EventType, str],
        data: Any,
        metadata: Union[EventMetadata, Mapping[str, Any]],
        test: bool = False,
    ) -> WebhookEventPayload:
        if isinstance(metadata, EventMetadata):
            metadata = metadata.model_dump()
        try:
            return WebhookEventPayload(
                id=new_id("evt"),
                type=event_type,
                timestamp=self._clock.now(),
                data=data,
                metadata={**metadata, "environment": self._settings.ENVIRONMENT},
                test=test,
            )
        except PydanticValidationError as e:
            errors = e.errors(include_url=False, include_context=False, include_input=False)
            raise ValidationError("Invalid webhook event", details={"errors": errors}) from e

    async def emit(
        self,
        event_type: Union[EventType, str],
        data: Any,
        metadata: Union[EventMetadata, Mapping[str, Any]],
    ) -> str:
        """
        Emit an event to every matching subscription.

        The event is archived even when nobody is subscribed. Deliveries are
        created and queued before this returns; it never waits on HTTP.

        Returns:
            The event id.

        Raises:
            ValidationError: for an unknown event type or missing ``source``.
        """
        payload = self._build_payload(event_type, data, metadata)

        self.history.add(payload)
        logger.info(
            f"Webhook event emitted: {payload.id} type={payload.type.value} "
            f"resource={payload.metadata.resource_id}"
        )

        matching = await self._registry.find_matching(payload.type, payload)
        logger.info(
            f"Found {len(matching)} matching subscriptions for event {payload.id}: "
            f"{[subscription.id for subscription in matching]}"
        )

        created = 0
        for subscription in matching:
            try:
                await self.create_delivery(subscription, payload)
                created += 1
            except Exception as e:
                logger.error(
                    f"Failed to create delivery of event {payload.id} "
                    f"for subscription {subscription.id}: {e}"
                )

        report_request(self._metrics, payload.id, {
            "method": "EMIT",
            "path": f"/webhooks/events/{payload.type.value}",
            "status_code": 200,
            "duration": 0,
            "metadata": {"subscription_count": len(matching), "deliveries_created": created},
        })
        return payload.id

    async def create_delivery(
        self, subscription: WebhookSubscription, payload: WebhookEventPayload
    ) -> WebhookDelivery:
        """Sign ``payload`` for ``subscription``, store the delivery and queue it."""
        delivery_id = new_id("del")
        body = payload.to_json()
        config = subscription.config

        system_headers = {
            "Content-Type": config.content_type,
            config.signature_header: SignatureService.header_value(body, subscription.secret),
            "User-Agent": self._settings.WEBHOOK_USER_AGENT,
            "X-Webhook-Event": payload.type.value,
            "X-Webhook-Delivery": delivery_id,
        }
        # Header names are case-insensitive; a custom header never shadows a system one
        reserved = {name.lower() for name in system_headers}
        headers = {
            **{
                name: value for name, value in config.custom_headers.items()
                if name.lower() not in reserved
            },
            **system_headers,
        }

        now = self._clock.now()
        delivery = WebhookDelivery(
            id=delivery_id,
            subscription_id=subscription.id,
            event_id=payload.id,
            payload=payload,
            request_body=body,
            url=str(subscription.url),
            status=DeliveryStatus.PENDING,
            request_headers=headers,
            created_at=now,
            updated_at=now,
            metrics=DeliveryMetrics(request_size=len(body.encode("utf-8"))),
        )

        await self._deliveries.add(delivery)
        self._retry_queue.push(delivery)

        logger.info(
            f"Webhook delivery created: {delivery_id} for subscription {subscription.id} "
            f"({payload.type.value} -> {delivery.url})"
        )
        return delivery

    async def send_test_event(self, subscription_id: str) -> Optional[WebhookDelivery]:
        """
        Queue a test ping for one subscription, bypassing filters.

        Test pings are not archived in the event history. Returns ``None``
        when the subscription does not exist.
        """
        subscription = await self._registry.get(subscription_id)
        if subscription is None:
            return None

        payload = self._build_payload(
            subscription.events[0],
            {"message": "This is a test webhook delivery"},
            {"source": "webhook-test"},
            test=True,
        )
        delivery = await self.create_delivery(subscription, payload)
        logger.info(f"Test webhook queued for subscription {subscription_id}: {delivery.id}")
        return delivery

    def get_event(self, event_id: str) -> Optional[WebhookEventPayload]:
        return self.history.get(event_id)

    def list_events(
        self, query: Optional[Union[EventQuery, Mapping[str, Any]]] = None
    ) -> List[WebhookEventPayload]:
        """Browse the archived events, newest first."""
        if query is None:
            query = EventQuery()
        elif not isinstance(query, EventQuery):
            try:
                query = EventQuery.model_validate(query)
            except PydanticValidationError as e:
                errors = e.errors(include_url=False, include_context=False, include_input=False)
                raise ValidationError("Invalid event filter", details={"errors": errors}) from e

        events = self.history.values()

        if query.types:
            events = [e for e in events if e.type in query.types]
        if query.resource_ids:
            events = [e for e in events if e.metadata.resource_id in query.resource_ids]
        if query.user_ids:
            events = [e for e in events if e.metadata.user_id in query.user_ids]
        if query.start_date:
            events = [e for e in events if e.timestamp >= query.start_date]
        if query.end_date:
            events = [e for e in events if e.timestamp <= query.end_date]

        events = sorted(reversed(events), key=lambda event: event.timestamp, reverse=True)
        if query.limit is not None:
            events = events[:query.limit]
        return events
