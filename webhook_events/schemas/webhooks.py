"""
Webhook API schemas.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from webhook_events.core.webhooks.models import (
    EventMetadata,
    EventType,
    SubscriptionConfig,
    SubscriptionFilters,
    SubscriptionMetadata,
    WebhookSubscription,
)


class SubscriptionCreateRequest(BaseModel):
    """Subscription registration request schema."""
    url: str = Field(..., description="Endpoint that receives the webhook POSTs")
    events: List[EventType] = Field(..., min_length=1, description="Event types to subscribe to")
    config: Optional[Dict[str, Any]] = Field(None, description="Delivery policy overrides")
    filters: Optional[SubscriptionFilters] = Field(None, description="Resource, user and data filters")
    metadata: Optional[SubscriptionMetadata] = Field(None, description="Descriptive metadata")
    active: bool = Field(default=True, description="Whether the subscription receives events")


class SubscriptionResponse(BaseModel):
    """Subscription schema; the signing secret is never included."""
    id: str
    url: str
    events: List[EventType]
    active: bool
    metadata: SubscriptionMetadata
    config: SubscriptionConfig
    filters: Optional[SubscriptionFilters] = None
    failure_count: int
    last_delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> "SubscriptionResponse":
        data = subscription.model_dump(exclude={"secret"})
        data["url"] = str(subscription.url)
        return cls.model_validate(data)


class SubscriptionCreatedResponse(SubscriptionResponse):
    """Registration response; the only place the signing secret is returned."""
    secret: str = Field(..., description="HMAC-SHA256 signing secret")

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> "SubscriptionCreatedResponse":
        data = subscription.model_dump()
        data["url"] = str(subscription.url)
        return cls.model_validate(data)


class EventCreateRequest(BaseModel):
    """Event emission request schema."""
    type: EventType = Field(..., description="Event type")
    data: Any = Field(default=None, description="Event data")
    metadata: EventMetadata = Field(..., description="Event metadata; source is required")


class EventCreatedResponse(BaseModel):
    """Event emission response schema."""
    event_id: str = Field(..., description="Identifier of the emitted event")


class DeliveryRetryResponse(BaseModel):
    """Manual retry response schema."""
    delivery_id: str
    queued: bool


class HealthResponse(BaseModel):
    """Webhook system health schema."""
    status: str = Field(..., description="healthy or degraded")
    running: bool
    warnings: List[str] = Field(default_factory=list)
    success_rate: float
    retry_queue_size: int
    dead_letter_queue_size: int
