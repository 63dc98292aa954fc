"""
Storage interfaces for subscriptions and deliveries, with in-memory implementations.

Durable backends implement the same protocols and are passed to
``WebhookEventSystem``.
"""

from datetime import datetime
from typing import Dict, List, Optional, Protocol

from .models import WebhookDelivery, WebhookSubscription


class SubscriptionStore(Protocol):
    async def add(self, subscription: WebhookSubscription) -> None: ...

    async def get(self, subscription_id: str) -> Optional[WebhookSubscription]: ...

    async def save(self, subscription: WebhookSubscription) -> None: ...

    async def delete(self, subscription_id: str) -> bool: ...

    async def list(self) -> List[WebhookSubscription]: ...


class DeliveryStore(Protocol):
    async def add(self, delivery: WebhookDelivery) -> None: ...

    async def get(self, delivery_id: str) -> Optional[WebhookDelivery]: ...

    async def save(self, delivery: WebhookDelivery) -> None: ...

    async def list(self) -> List[WebhookDelivery]: ...

    async def delete_finished_before(self, cutoff: datetime) -> int: ...


class InMemorySubscriptionStore:
    """Subscriptions kept in a dict, in registration order."""

    def __init__(self):
        self._subscriptions: Dict[str, WebhookSubscription] = {}

    async def add(self, subscription: WebhookSubscription) -> None:
        self._subscriptions[subscription.id] = subscription

    async def get(self, subscription_id: str) -> Optional[WebhookSubscription]:
        return self._subscriptions.get(subscription_id)

    async def save(self, subscription: WebhookSubscription) -> None:
        self._subscriptions[subscription.id] = subscription

    async def delete(self, subscription_id: str) -> bool:
        return self._subscriptions.pop(subscription_id, None) is not None

    async def list(self) -> List[WebhookSubscription]:
        return list(self._subscriptions.values())


class InMemoryDeliveryStore:
    """Deliveries kept in a dict, in creation order."""

    def __init__(self):
        self._deliveries: Dict[str, WebhookDelivery] = {}

    async def add(self, delivery: WebhookDelivery) -> None:
        self._deliveries[delivery.id] = delivery

    async def get(self, delivery_id: str) -> Optional[WebhookDelivery]:
        return self._deliveries.get(delivery_id)

    async def save(self, delivery: WebhookDelivery) -> None:
        self._deliveries[delivery.id] = delivery

    async def list(self) -> List[WebhookDelivery]:
        return list(self._deliveries.values())

    async def delete_finished_before(self, cutoff: datetime) -> int:
        """Remove terminal deliveries last updated before ``cutoff``."""
        expired = [
            delivery_id
            for delivery_id, delivery in self._deliveries.items()
            if delivery.is_terminal and delivery.updated_at < cutoff
        ]
        for delivery_id in expired:
            del self._deliveries[delivery_id]
        return len(expired)
