"""
Subscription registry: CRUD and event matching.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from webhook_events.core.config import Settings
from webhook_events.core.scheduling import Clock
from webhook_events.monitoring.metrics import MetricsSink, report_request
from webhook_events.utils.exceptions import ValidationError

from .models import (
    EventType,
    SubscriptionConfig,
    SubscriptionFilters,
    SubscriptionMetadata,
    SubscriptionQuery,
    SubscriptionUpdate,
    WebhookEventPayload,
    WebhookSubscription,
    new_id,
)
from .queue import RetryQueue
from .signature import SignatureService
from .store import SubscriptionStore

_MISSING = object()


def get_nested_value(data: Any, path: str) -> Any:
    """Resolve a dot path such as ``"booking.guests"`` inside nested mappings."""
    current = data
    for key in path.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return _MISSING
        current = current[key]
    return current


def values_equal(actual: Any, expected: Any) -> bool:
    """Equality that never treats ``True`` as ``1`` or a string as a number."""
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    if isinstance(actual, (int, float)) and isinstance(expected, (int, float)):
        return actual == expected
    if isinstance(actual, Mapping) and isinstance(expected, Mapping):
        return actual.keys() == expected.keys() and all(
            values_equal(actual[key], expected[key]) for key in actual
        )
    if isinstance(actual, list) and isinstance(expected, list):
        return len(actual) == len(expected) and all(
            values_equal(a, e) for a, e in zip(actual, expected)
        )
    return type(actual) is type(expected) and actual == expected


def _validation_error(message: str, exc: PydanticValidationError) -> ValidationError:
    errors = exc.errors(include_url=False, include_context=False, include_input=False)
    return ValidationError(message, details={"errors": errors})


class SubscriptionRegistry:
    """Owns webhook subscriptions and decides which of them receive an event."""

    def __init__(
        self,
        store: SubscriptionStore,
        retry_queue: RetryQueue,
        settings: Settings,
        clock: Clock,
        metrics: Optional[MetricsSink] = None,
    ):
        self._store = store
        self._retry_queue = retry_queue
        self._settings = settings
        self._clock = clock
        self._metrics = metrics

    def _default_config(self) -> Dict[str, Any]:
        return {
            "timeout": self._settings.WEBHOOK_DEFAULT_TIMEOUT_SECONDS,
            "retry_attempts": self._settings.WEBHOOK_DEFAULT_RETRY_ATTEMPTS,
            "retry_delay_ms": self._settings.WEBHOOK_DEFAULT_RETRY_DELAY_MS,
            "signature_header": self._settings.WEBHOOK_SIGNATURE_HEADER,
            "content_type": self._settings.WEBHOOK_CONTENT_TYPE,
        }

    async def register(
        self,
        url: str,
        events: Sequence[Union[EventType, str]],
        config: Optional[Union[SubscriptionConfig, Mapping[str, Any]]] = None,
        filters: Optional[Union[SubscriptionFilters, Mapping[str, Any]]] = None,
        metadata: Optional[Union[SubscriptionMetadata, Mapping[str, Any]]] = None,
        active: bool = True,
    ) -> WebhookSubscription:
        """
        Register a new subscription.

        The returned object carries the generated signing secret. Caller
        config values override the defaults from settings.

        Raises:
            ValidationError: if the URL, the event list or any config value is invalid.
        """
        if isinstance(config, SubscriptionConfig):
            overrides = config.model_dump(exclude_unset=True)
        else:
            overrides = dict(config or {})

        now = self._clock.now()
        try:
            subscription = WebhookSubscription(
                id=new_id("wh"),
                url=url,
                events=list(events or []),
                active=active,
                secret=SignatureService.generate_secret(),
                metadata=metadata or SubscriptionMetadata(),
                config={**self._default_config(), **overrides},
                filters=filters,
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            raise _validation_error("Invalid webhook subscription", e) from e

        await self._store.add(subscription)

        logger.info(
            f"Webhook subscription registered: {subscription.id} -> {subscription.url} "
            f"for events {[event.value for event in subscription.events]} "
            f"(provider={subscription.metadata.provider})"
        )
        report_request(self._metrics, f"webhook_subscription_{subscription.id}", {
            "method": "REGISTER",
            "path": "/webhooks/subscriptions",
            "status_code": 201,
            "duration": 0,
        })
        return subscription

    async def update(
        self,
        subscription_id: str,
        patch: Union[SubscriptionUpdate, Mapping[str, Any]],
    ) -> bool:
        """
        Apply a partial update. ``id`` and ``secret`` in the patch are ignored.

        Returns ``False`` when the subscription does not exist.
        """
        subscription = await self._store.get(subscription_id)
        if subscription is None:
            return False

        try:
            update = patch if isinstance(patch, SubscriptionUpdate) else SubscriptionUpdate.model_validate(patch)
        except PydanticValidationError as e:
            raise _validation_error("Invalid webhook subscription update", e) from e

        changes = update.model_dump(exclude_unset=True)
        data = subscription.model_dump()

        if changes.get("config") is not None:
            changes["config"] = {**data["config"], **changes["config"]}
        elif "config" in changes:
            del changes["config"]

        # A reactivated subscription starts a fresh failure streak
        if changes.get("active") is True and not subscription.active:
            changes["failure_count"] = 0

        data.update(changes)
        data["id"] = subscription.id
        data["secret"] = subscription.secret
        data["updated_at"] = self._clock.now()

        try:
            updated = WebhookSubscription.model_validate(data)
        except PydanticValidationError as e:
            raise _validation_error("Invalid webhook subscription update", e) from e

        await self._store.save(updated)
        logger.info(f"Webhook subscription updated: {subscription_id} (fields: {sorted(changes)})")
        return True

    async def remove(self, subscription_id: str) -> bool:
        """Delete a subscription and drop its queued deliveries."""
        removed = await self._store.delete(subscription_id)
        if not removed:
            return False

        dropped = self._retry_queue.remove_subscription(subscription_id)
        logger.info(f"Webhook subscription removed: {subscription_id} ({dropped} queued deliveries dropped)")
        return True

    async def get(self, subscription_id: str) -> Optional[WebhookSubscription]:
        return await self._store.get(subscription_id)

    async def list(
        self, query: Optional[Union[SubscriptionQuery, Mapping[str, Any]]] = None
    ) -> List[WebhookSubscription]:
        """List subscriptions, optionally narrowed by active flag, events or provider."""
        if query is None:
            query = SubscriptionQuery()
        elif not isinstance(query, SubscriptionQuery):
            try:
                query = SubscriptionQuery.model_validate(query)
            except PydanticValidationError as e:
                raise _validation_error("Invalid subscription filter", e) from e

        subscriptions = await self._store.list()

        if query.active is not None:
            subscriptions = [s for s in subscriptions if s.active == query.active]

        if query.events:
            wanted = set(query.events)
            subscriptions = [s for s in subscriptions if wanted.intersection(s.events)]

        if query.provider:
            subscriptions = [s for s in subscriptions if s.metadata.provider == query.provider]

        return subscriptions

    async def find_matching(
        self, event_type: EventType, payload: WebhookEventPayload
    ) -> List[WebhookSubscription]:
        """Return the active subscriptions whose events and filters accept ``payload``."""
        return [
            subscription
            for subscription in await self._store.list()
            if self.matches(subscription, event_type, payload)
        ]

    @staticmethod
    def matches(
        subscription: WebhookSubscription,
        event_type: EventType,
        payload: WebhookEventPayload,
    ) -> bool:
        if not subscription.active:
            return False

        if event_type not in subscription.events:
            return False

        filters = subscription.filters
        if filters is None:
            return True

        resource_id = payload.metadata.resource_id
        if filters.resource_ids and resource_id and resource_id not in filters.resource_ids:
            return False

        user_id = payload.metadata.user_id
        if filters.user_ids and user_id and user_id not in filters.user_ids:
            return False

        for path, expected in filters.conditions.items():
            if not values_equal(get_nested_value(payload.data, path), expected):
                return False

        return True
