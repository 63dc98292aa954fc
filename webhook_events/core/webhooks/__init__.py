"""
Outbound webhook event system.
"""

from .dispatcher import DeliveryDispatcher, calculate_retry_delay
from .emitter import EventEmitter, EventHistory
from .health import HealthMonitor
from .models import (
    DeliveryErrorKind,
    DeliveryStatus,
    EventType,
    WebhookDelivery,
    WebhookEventPayload,
    WebhookStats,
    WebhookSubscription,
)
from .registry import SubscriptionRegistry
from .signature import SignatureService
from .system import WebhookEventSystem

__all__ = [
    "DeliveryDispatcher",
    "DeliveryErrorKind",
    "DeliveryStatus",
    "EventEmitter",
    "EventHistory",
    "EventType",
    "HealthMonitor",
    "SignatureService",
    "SubscriptionRegistry",
    "WebhookDelivery",
    "WebhookEventPayload",
    "WebhookEventSystem",
    "WebhookStats",
    "WebhookSubscription",
    "calculate_retry_delay",
]
