"""
Retry queue shared by the emitter, the registry and the dispatcher.
"""

from datetime import datetime
from typing import Dict, List

from .models import WebhookDelivery


class RetryQueue:
    """Deliveries waiting for their next attempt, keyed by delivery id."""

    def __init__(self):
        self._items: Dict[str, WebhookDelivery] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, delivery_id: object) -> bool:
        return delivery_id in self._items

    def push(self, delivery: WebhookDelivery) -> None:
        self._items[delivery.id] = delivery

    def discard(self, delivery_id: str) -> bool:
        return self._items.pop(delivery_id, None) is not None

    def take_due(self, now: datetime) -> List[WebhookDelivery]:
        """Remove and return every delivery whose retry time has come."""
        due = [
            delivery for delivery in self._items.values()
            if delivery.next_retry_at is None or delivery.next_retry_at <= now
        ]
        for delivery in due:
            del self._items[delivery.id]
        return due

    def remove_subscription(self, subscription_id: str) -> int:
        """Drop every queued delivery of a subscription. Returns how many were dropped."""
        doomed = [
            delivery_id for delivery_id, delivery in self._items.items()
            if delivery.subscription_id == subscription_id
        ]
        for delivery_id in doomed:
            del self._items[delivery_id]
        return len(doomed)

    def snapshot(self) -> List[WebhookDelivery]:
        return list(self._items.values())
