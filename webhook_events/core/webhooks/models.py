"""
Webhook data models.
"""

import json
import uuid
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator


class EventType(str, Enum):
    """Domain events a subscription can listen to."""
    # Booking events
    BOOKING_CREATED = "booking.created"
    BOOKING_UPDATED = "booking.updated"
    BOOKING_CONFIRMED = "booking.confirmed"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_COMPLETED = "booking.completed"

    # Payment events
    PAYMENT_INITIATED = "payment.initiated"
    PAYMENT_COMPLETED = "payment.completed"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_REFUNDED = "payment.refunded"

    # Calendar events
    CALENDAR_SLOT_RESERVED = "calendar.slot_reserved"
    CALENDAR_SLOT_RELEASED = "calendar.slot_released"
    CALENDAR_AVAILABILITY_CHANGED = "calendar.availability_changed"

    # Customer events
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    CUSTOMER_PREFERENCES_CHANGED = "customer.preferences_changed"

    # Quote events
    QUOTE_GENERATED = "quote.generated"
    QUOTE_SENT = "quote.sent"
    QUOTE_ACCEPTED = "quote.accepted"
    QUOTE_REJECTED = "quote.rejected"
    QUOTE_EXPIRED = "quote.expired"

    # System events
    SYSTEM_MAINTENANCE_SCHEDULED = "system.maintenance_scheduled"
    SYSTEM_CAPACITY_ALERT = "system.capacity_alert"
    SYSTEM_ERROR_THRESHOLD_EXCEEDED = "system.error_threshold_exceeded"

    # Integration events
    INTEGRATION_STATUS_CHANGED = "integration.status_changed"
    INTEGRATION_HEALTH_CHECK_FAILED = "integration.health_check_failed"


class DeliveryStatus(str, Enum):
    """Webhook delivery status."""
    PENDING = "pending"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    DEAD_LETTER = "dead_letter"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    DeliveryStatus.DELIVERED,
    DeliveryStatus.DEAD_LETTER,
    DeliveryStatus.CANCELLED,
})


class DeliveryErrorKind(str, Enum):
    """Why a delivery attempt did not succeed."""
    NETWORK_ERROR = "network_error"
    TIMEOUT_ERROR = "timeout_error"
    HTTP_STATUS_ERROR = "http_status_error"
    SUBSCRIPTION_MISSING = "subscription_missing"


def new_id(prefix: str) -> str:
    """Generate an opaque identifier such as ``wh_3f9a...``."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class EventMetadata(BaseModel):
    """Context attached to an emitted event."""
    source: str = Field(..., min_length=1)
    resource_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    correlation_id: Optional[str] = None
    environment: Optional[str] = None


class WebhookEventPayload(BaseModel):
    """The body every subscriber receives."""
    model_config = ConfigDict(frozen=True)

    id: str
    type: EventType
    version: str = "1.0"
    timestamp: datetime
    data: Any = None
    metadata: EventMetadata
    test: bool = False

    def to_json(self) -> str:
        """Serialize to the compact JSON that is signed and sent."""
        return json.dumps(self.model_dump(mode="json"), separators=(",", ":"))


class SubscriptionConfig(BaseModel):
    """Per-subscription delivery policy."""
    timeout: float = Field(10.0, gt=0)
    retry_attempts: int = Field(3, ge=1)
    retry_delay_ms: int = Field(1000, ge=0)
    signature_header: str = "X-Webhook-Signature"
    content_type: str = "application/json"
    custom_headers: Dict[str, str] = Field(default_factory=dict)


class SubscriptionFilters(BaseModel):
    """Optional narrowing applied after the event type matched."""
    resource_ids: List[str] = Field(default_factory=list)
    user_ids: List[str] = Field(default_factory=list)
    conditions: Dict[str, Any] = Field(default_factory=dict)


class SubscriptionMetadata(BaseModel):
    """Descriptive information about a subscriber."""
    name: Optional[str] = None
    description: Optional[str] = None
    provider: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


def _unique_events(events: List[EventType]) -> List[EventType]:
    if not events:
        raise ValueError("at least one event type is required")
    return list(dict.fromkeys(events))


class WebhookSubscription(BaseModel):
    """Webhook subscription configuration."""
    id: str
    url: HttpUrl
    events: List[EventType]
    active: bool = True
    secret: str
    metadata: SubscriptionMetadata = Field(default_factory=SubscriptionMetadata)
    config: SubscriptionConfig = Field(default_factory=SubscriptionConfig)
    filters: Optional[SubscriptionFilters] = None
    failure_count: int = 0
    last_delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("events")
    @classmethod
    def validate_events(cls, events: List[EventType]) -> List[EventType]:
        return _unique_events(events)


class SubscriptionUpdate(BaseModel):
    """Partial update for a subscription; identity fields are ignored."""
    model_config = ConfigDict(extra="ignore")

    url: Optional[HttpUrl] = None
    events: Optional[List[EventType]] = None
    active: Optional[bool] = None
    metadata: Optional[SubscriptionMetadata] = None
    config: Optional[Dict[str, Any]] = None
    filters: Optional[SubscriptionFilters] = None

    @field_validator("events")
    @classmethod
    def validate_events(cls, events: Optional[List[EventType]]) -> Optional[List[EventType]]:
        if events is None:
            return None
        return _unique_events(events)


class DeliveryFailure(BaseModel):
    """Classified failure recorded on a delivery."""
    kind: DeliveryErrorKind
    message: str
    status_code: Optional[int] = None


class DeliveryMetrics(BaseModel):
    """Sizes and timings of the last attempt."""
    request_duration_ms: Optional[float] = None
    request_size: int = 0
    response_size: Optional[int] = None


class WebhookDelivery(BaseModel):
    """One event being delivered to one subscription."""
    id: str
    subscription_id: str
    event_id: str
    payload: WebhookEventPayload
    request_body: str
    url: str
    http_method: str = "POST"
    status: DeliveryStatus = DeliveryStatus.PENDING
    request_headers: Dict[str, str] = Field(default_factory=dict)
    response_status: Optional[int] = None
    response_headers: Dict[str, str] = Field(default_factory=dict)
    response_body: Optional[str] = None
    error: Optional[DeliveryFailure] = None
    error_message: Optional[str] = None
    attempt_count: int = 0
    next_retry_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    metrics: DeliveryMetrics = Field(default_factory=DeliveryMetrics)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SubscriptionQuery(BaseModel):
    """Filter for listing subscriptions."""
    active: Optional[bool] = None
    events: List[EventType] = Field(default_factory=list)
    provider: Optional[str] = None


class DeliveryQuery(BaseModel):
    """Filter for listing deliveries."""
    subscription_ids: List[str] = Field(default_factory=list)
    statuses: List[DeliveryStatus] = Field(default_factory=list)
    types: List[EventType] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class EventQuery(BaseModel):
    """Filter for browsing the event history."""
    types: List[EventType] = Field(default_factory=list)
    resource_ids: List[str] = Field(default_factory=list)
    user_ids: List[str] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = Field(None, ge=1)

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class SubscriptionCounts(BaseModel):
    total: int
    active: int
    inactive: int


class DeliveryCounts(BaseModel):
    total: int
    delivered: int
    failed: int
    pending: int
    dead_letter: int
    by_status: Dict[str, int]


class EventTypeCount(BaseModel):
    type: str
    count: int


class EventCounts(BaseModel):
    total: int
    recent_count: int
    top_events: List[EventTypeCount]


class HealthSummary(BaseModel):
    success_rate: float
    avg_delivery_time_ms: float
    retry_queue_size: int
    dead_letter_queue_size: int


class WebhookStats(BaseModel):
    """Point-in-time statistics of the whole system."""
    generated_at: datetime
    subscriptions: SubscriptionCounts
    deliveries: DeliveryCounts
    events: EventCounts
    health: HealthSummary
