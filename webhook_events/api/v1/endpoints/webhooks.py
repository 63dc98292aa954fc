"""
Webhook management API endpoints.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from loguru import logger

from webhook_events.core.webhooks.models import (
    DeliveryQuery,
    DeliveryStatus,
    EventQuery,
    EventType,
    SubscriptionQuery,
    SubscriptionUpdate,
    WebhookDelivery,
    WebhookEventPayload,
    WebhookStats,
)
from webhook_events.core.webhooks.system import WebhookEventSystem
from webhook_events.monitoring.metrics import MetricsCollector
from webhook_events.schemas.webhooks import (
    DeliveryRetryResponse,
    EventCreatedResponse,
    EventCreateRequest,
    HealthResponse,
    SubscriptionCreatedResponse,
    SubscriptionCreateRequest,
    SubscriptionResponse,
)
from webhook_events.utils.exceptions import ConflictError, NotFoundError

router = APIRouter()


def get_webhook_system(request: Request) -> WebhookEventSystem:
    """The webhook system owned by the application."""
    return request.app.state.webhook_system


async def _require_subscription(system: WebhookEventSystem, subscription_id: str):
    subscription = await system.get_subscription(subscription_id)
    if subscription is None:
        raise NotFoundError(
            f"Webhook subscription {subscription_id} not found",
            details={"subscription_id": subscription_id},
        )
    return subscription


# Subscriptions

@router.post(
    "/subscriptions",
    response_model=SubscriptionCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_subscription(
    body: SubscriptionCreateRequest,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    """
    Register a webhook subscription.

    The response is the only place the signing secret is returned; store it
    on the receiving side to verify the ``X-Webhook-Signature`` header.
    """
    subscription = await system.register_subscription(
        url=body.url,
        events=body.events,
        config=body.config,
        filters=body.filters,
        metadata=body.metadata,
        active=body.active,
    )
    return SubscriptionCreatedResponse.from_subscription(subscription)


@router.get("/subscriptions", response_model=List[SubscriptionResponse])
async def list_subscriptions(
    active: Optional[bool] = None,
    events: Optional[List[EventType]] = Query(None),
    provider: Optional[str] = None,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    """List subscriptions, optionally filtered."""
    query = SubscriptionQuery(active=active, events=events or [], provider=provider)
    subscriptions = await system.list_subscriptions(query)
    return [SubscriptionResponse.from_subscription(s) for s in subscriptions]


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: str,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    subscription = await _require_subscription(system, subscription_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: str,
    patch: SubscriptionUpdate,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    """Partially update a subscription. ``config`` is merged into the existing config."""
    if not await system.update_subscription(subscription_id, patch):
        raise NotFoundError(
            f"Webhook subscription {subscription_id} not found",
            details={"subscription_id": subscription_id},
        )
    subscription = await _require_subscription(system, subscription_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.delete("/subscriptions/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subscription(
    subscription_id: str,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    """Remove a subscription and drop its queued deliveries."""
    if not await system.remove_subscription(subscription_id):
        raise NotFoundError(
            f"Webhook subscription {subscription_id} not found",
            details={"subscription_id": subscription_id},
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/subscriptions/{subscription_id}/test",
    response_model=WebhookDelivery,
    status_code=status.HTTP_202_ACCEPTED,
)
async def test_subscription(
    subscription_id: str,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    """
    Queue a test ping for a subscription.

    The ping bypasses filters and is sent on the next dispatcher tick.
    """
    delivery = await system.send_test_event(subscription_id)
    if delivery is None:
        raise NotFoundError(
            f"Webhook subscription {subscription_id} not found",
            details={"subscription_id": subscription_id},
        )
    return delivery


# Events

@router.post("/events", response_model=EventCreatedResponse, status_code=status.HTTP_202_ACCEPTED)
async def emit_event(
    body: EventCreateRequest,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    """Emit an event; deliveries are queued, not sent, before this returns."""
    event_id = await system.emit_event(body.type, body.data, body.metadata)
    return EventCreatedResponse(event_id=event_id)


@router.get("/events", response_model=List[WebhookEventPayload])
async def list_events(
    types: Optional[List[EventType]] = Query(None),
    resource_ids: Optional[List[str]] = Query(None),
    user_ids: Optional[List[str]] = Query(None),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: Optional[int] = Query(None, ge=1),
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    """Browse archived events, newest first."""
    query = EventQuery(
        types=types or [],
        resource_ids=resource_ids or [],
        user_ids=user_ids or [],
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return system.list_events(query)


@router.get("/events/{event_id}", response_model=WebhookEventPayload)
async def get_event(
    event_id: str,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    event = system.get_event(event_id)
    if event is None:
        raise NotFoundError(f"Webhook event {event_id} not found", details={"event_id": event_id})
    return event


# Deliveries

@router.get("/deliveries", response_model=List[WebhookDelivery])
async def list_deliveries(
    subscription_ids: Optional[List[str]] = Query(None),
    statuses: Optional[List[DeliveryStatus]] = Query(None),
    types: Optional[List[EventType]] = Query(None),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    """List deliveries, newest first."""
    query = DeliveryQuery(
        subscription_ids=subscription_ids or [],
        statuses=statuses or [],
        types=types or [],
        start_date=start_date,
        end_date=end_date,
    )
    return await system.list_deliveries(query)


@router.get("/deliveries/{delivery_id}", response_model=WebhookDelivery)
async def get_delivery(
    delivery_id: str,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    delivery = await system.get_delivery(delivery_id)
    if delivery is None:
        raise NotFoundError(f"Webhook delivery {delivery_id} not found", details={"delivery_id": delivery_id})
    return delivery


@router.post(
    "/deliveries/{delivery_id}/retry",
    response_model=DeliveryRetryResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_delivery(
    delivery_id: str,
    system: WebhookEventSystem = Depends(get_webhook_system),
):
    """Requeue a failed, cancelled or pending delivery with a fresh attempt budget."""
    delivery = await system.get_delivery(delivery_id)
    if delivery is None:
        raise NotFoundError(f"Webhook delivery {delivery_id} not found", details={"delivery_id": delivery_id})

    if not await system.retry_delivery(delivery_id):
        raise ConflictError(
            f"Webhook delivery {delivery_id} cannot be retried in status {delivery.status.value}",
            details={"delivery_id": delivery_id, "status": delivery.status.value},
        )

    logger.info(f"Manual retry requested for webhook delivery {delivery_id}")
    return DeliveryRetryResponse(delivery_id=delivery_id, queued=True)


# Monitoring

@router.get("/statistics", response_model=WebhookStats)
async def get_statistics(system: WebhookEventSystem = Depends(get_webhook_system)):
    return await system.get_statistics()


@router.get("/health", response_model=HealthResponse)
async def webhook_health(system: WebhookEventSystem = Depends(get_webhook_system)):
    """Health of the webhook system; ``degraded`` whenever a health warning is active."""
    stats = await system.get_statistics()
    warnings = system.health.warnings_for(stats)
    return HealthResponse(
        status="degraded" if warnings else "healthy",
        running=system.is_running,
        warnings=warnings,
        success_rate=stats.health.success_rate,
        retry_queue_size=stats.health.retry_queue_size,
        dead_letter_queue_size=stats.health.dead_letter_queue_size,
    )


@router.get("/metrics")
async def get_metrics(system: WebhookEventSystem = Depends(get_webhook_system)):
    """Summary of recent delivery attempts from the in-memory metrics collector."""
    if not isinstance(system.metrics, MetricsCollector):
        raise NotFoundError("No in-memory metrics collector is configured")
    return system.metrics.get_summary()
