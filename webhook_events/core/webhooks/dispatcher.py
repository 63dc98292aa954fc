"""
Delivery dispatcher: drains the retry queue and performs HTTP delivery attempts.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Set, Union

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from webhook_events.core.config import Settings
from webhook_events.core.scheduling import Clock
from webhook_events.monitoring.metrics import MetricsSink, report_error, report_request
from webhook_events.utils.exceptions import ValidationError

from .models import (
    DeliveryErrorKind,
    DeliveryFailure,
    DeliveryQuery,
    DeliveryStatus,
    WebhookDelivery,
    WebhookSubscription,
)
from .queue import RetryQueue
from .store import DeliveryStore, SubscriptionStore


def default_jitter() -> float:
    """Random jitter factor in [0, 0.1)."""
    return random.random() * 0.1


def calculate_retry_delay(
    attempt: int,
    base_delay_ms: float,
    max_delay_ms: float,
    jitter: Optional[float] = None,
) -> float:
    """
    Exponential backoff with jitter, in milliseconds.

    ``attempt`` is the number of the attempt that just failed (1-based).
    """
    if jitter is None:
        jitter = default_jitter()
    exponential_delay = base_delay_ms * (2 ** (attempt - 1))
    return min(exponential_delay * (1 + jitter), max_delay_ms)


@dataclass
class DeliveryResult:
    """Result of one webhook delivery attempt."""
    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    response_headers: Dict[str, str] = field(default_factory=dict)
    response_size: Optional[int] = None
    failure: Optional[DeliveryFailure] = None
    duration_ms: float = 0.0


class DeliveryDispatcher:
    """Retry engine that sends due deliveries and applies the retry policy."""

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        deliveries: DeliveryStore,
        retry_queue: RetryQueue,
        settings: Settings,
        clock: Clock,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsSink] = None,
        jitter: Callable[[], float] = default_jitter,
    ):
        self._subscriptions = subscriptions
        self._deliveries = deliveries
        self.retry_queue = retry_queue
        self._settings = settings
        self._clock = clock
        self._client = client
        self._owns_client = client is None
        self._metrics = metrics
        self._jitter = jitter
        self._in_flight: Set[str] = set()

    @property
    def in_flight(self) -> FrozenSet[str]:
        """Ids of deliveries taken by the current tick and not yet settled."""
        return frozenset(self._in_flight)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=False)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this dispatcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def retry_delay_ms(self, attempt: int, subscription: WebhookSubscription) -> float:
        return calculate_retry_delay(
            attempt,
            subscription.config.retry_delay_ms,
            self._settings.WEBHOOK_MAX_RETRY_DELAY_MS,
            jitter=self._jitter(),
        )

    async def process_due(self) -> int:
        """
        Send every queued delivery that is due, concurrently.

        Returns the number of deliveries processed in this tick.
        """
        due = self.retry_queue.take_due(self._clock.now())
        if not due:
            return 0
        self._in_flight.update(delivery.id for delivery in due)

        logger.info(f"Processing {len(due)} webhook deliveries")
        try:
            results = await asyncio.gather(
                *(self._process_delivery(delivery) for delivery in due),
                return_exceptions=True,
            )
        except asyncio.CancelledError:
            # Attempts cancelled before they started
            for delivery in due:
                if delivery.id in self._in_flight:
                    self._in_flight.discard(delivery.id)
                    await self._requeue_interrupted(delivery)
            raise

        for delivery, result in zip(due, results):
            if isinstance(result, Exception):
                logger.error(f"Unexpected error processing webhook delivery {delivery.id}: {result}")
        return len(due)

    async def _process_delivery(self, delivery: WebhookDelivery) -> None:
        try:
            await self._attempt_delivery(delivery)
        except asyncio.CancelledError:
            await self._requeue_interrupted(delivery)
            raise
        finally:
            self._in_flight.discard(delivery.id)

    async def _attempt_delivery(self, delivery: WebhookDelivery) -> None:
        """
        Make one attempt and apply the retry policy to its outcome.

        A delivery dead-letters once ``attempt_count`` reaches the
        subscription's current ``retry_attempts``. If ``retry_attempts`` was
        lowered while the delivery was pending, it dead-letters on the next
        failure with the attempts it actually made, which can exceed the new
        limit.
        """
        subscription = await self._subscriptions.get(delivery.subscription_id)
        if subscription is None:
            await self._cancel(delivery)
            return

        delivery.status = DeliveryStatus.DELIVERING
        delivery.attempt_count += 1
        delivery.updated_at = self._clock.now()
        await self._deliveries.save(delivery)

        try:
            result = await self._make_http_request(delivery, subscription.config.timeout)
        except Exception as e:
            result = DeliveryResult(
                success=False,
                failure=DeliveryFailure(kind=DeliveryErrorKind.NETWORK_ERROR, message=str(e)),
            )

        self._record_response(delivery, result)
        report_request(self._metrics, delivery.id, {
            "method": delivery.http_method,
            "path": delivery.url,
            "status_code": result.status_code,
            "duration": result.duration_ms,
        })

        # The subscription may have been updated or removed while the request was in flight
        subscription = await self._subscriptions.get(delivery.subscription_id)

        if result.success:
            await self._mark_delivered(delivery, subscription, result)
            return

        report_error(self._metrics, delivery.id, delivery.error_message)
        logger.error(
            f"Webhook delivery failed: {delivery.id} (subscription {delivery.subscription_id}, "
            f"attempt {delivery.attempt_count}): {delivery.error_message}"
        )

        if subscription is None:
            await self._cancel(delivery)
        elif delivery.attempt_count < subscription.config.retry_attempts:
            await self._schedule_retry(delivery, subscription)
        else:
            await self._dead_letter(delivery, subscription)

    async def _make_http_request(self, delivery: WebhookDelivery, timeout: float) -> DeliveryResult:
        """POST the signed body; the whole attempt is bounded by ``timeout`` seconds."""
        start_time = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                self._get_client().request(
                    method=delivery.http_method,
                    url=delivery.url,
                    content=delivery.request_body.encode("utf-8"),
                    headers=delivery.request_headers,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return DeliveryResult(
                success=False,
                failure=DeliveryFailure(
                    kind=DeliveryErrorKind.TIMEOUT_ERROR,
                    message=f"Request timed out after {timeout}s",
                ),
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )
        except httpx.RequestError as e:
            return DeliveryResult(
                success=False,
                failure=DeliveryFailure(
                    kind=DeliveryErrorKind.NETWORK_ERROR,
                    message=str(e) or type(e).__name__,
                ),
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )

        duration_ms = (time.perf_counter() - start_time) * 1000
        body = response.text[:self._settings.WEBHOOK_RESPONSE_BODY_LIMIT]
        success = 200 <= response.status_code < 300

        failure = None
        if not success:
            failure = DeliveryFailure(
                kind=DeliveryErrorKind.HTTP_STATUS_ERROR,
                message=f"HTTP {response.status_code}: {body}",
                status_code=response.status_code,
            )

        return DeliveryResult(
            success=success,
            status_code=response.status_code,
            response_body=body,
            response_headers=dict(response.headers),
            response_size=len(response.content),
            failure=failure,
            duration_ms=duration_ms,
        )

    def _record_response(self, delivery: WebhookDelivery, result: DeliveryResult) -> None:
        delivery.response_status = result.status_code
        delivery.response_headers = result.response_headers
        delivery.response_body = result.response_body
        delivery.metrics.request_duration_ms = round(result.duration_ms, 2)
        delivery.metrics.response_size = result.response_size
        delivery.error = result.failure
        delivery.error_message = result.failure.message if result.failure else None

    async def _mark_delivered(
        self,
        delivery: WebhookDelivery,
        subscription: Optional[WebhookSubscription],
        result: DeliveryResult,
    ) -> None:
        now = self._clock.now()
        delivery.status = DeliveryStatus.DELIVERED
        delivery.delivered_at = now
        delivery.next_retry_at = None
        delivery.updated_at = now
        await self._deliveries.save(delivery)

        if subscription is not None:
            subscription.failure_count = 0
            subscription.last_delivered_at = now
            await self._subscriptions.save(subscription)

        logger.info(
            f"Webhook delivered successfully: {delivery.id} to {delivery.url} "
            f"(status {result.status_code}, {result.duration_ms:.0f}ms)"
        )

    async def _schedule_retry(self, delivery: WebhookDelivery, subscription: WebhookSubscription) -> None:
        delay_ms = self.retry_delay_ms(delivery.attempt_count, subscription)
        now = self._clock.now()
        delivery.status = DeliveryStatus.PENDING
        delivery.next_retry_at = now + timedelta(milliseconds=delay_ms)
        delivery.updated_at = now
        await self._deliveries.save(delivery)
        self.retry_queue.push(delivery)

        logger.info(
            f"Webhook delivery {delivery.id} scheduled for retry "
            f"(attempt {delivery.attempt_count}, in {delay_ms:.0f}ms at {delivery.next_retry_at.isoformat()})"
        )

    async def _dead_letter(self, delivery: WebhookDelivery, subscription: WebhookSubscription) -> None:
        delivery.status = DeliveryStatus.DEAD_LETTER
        delivery.next_retry_at = None
        delivery.updated_at = self._clock.now()
        await self._deliveries.save(delivery)

        subscription.failure_count += 1
        logger.warning(
            f"Webhook delivery {delivery.id} moved to dead letter queue after "
            f"{delivery.attempt_count} attempts (subscription {subscription.id}, "
            f"failure count {subscription.failure_count})"
        )

        threshold = self._settings.WEBHOOK_DEAD_LETTER_THRESHOLD
        if subscription.active and subscription.failure_count >= threshold:
            subscription.active = False
            subscription.updated_at = self._clock.now()
            logger.warning(
                f"Webhook subscription {subscription.id} disabled after "
                f"{subscription.failure_count} dead-lettered deliveries"
            )
        await self._subscriptions.save(subscription)

    async def _cancel(self, delivery: WebhookDelivery) -> None:
        delivery.status = DeliveryStatus.CANCELLED
        delivery.next_retry_at = None
        delivery.error = DeliveryFailure(
            kind=DeliveryErrorKind.SUBSCRIPTION_MISSING,
            message=f"Subscription {delivery.subscription_id} no longer exists",
        )
        delivery.error_message = delivery.error.message
        delivery.updated_at = self._clock.now()
        await self._deliveries.save(delivery)
        logger.warning(
            f"Webhook delivery {delivery.id} cancelled: subscription {delivery.subscription_id} not found"
        )

    async def _requeue_interrupted(self, delivery: WebhookDelivery) -> None:
        """Put a delivery whose tick was cancelled back on the queue, as if never attempted."""
        if delivery.status == DeliveryStatus.DELIVERING:
            delivery.status = DeliveryStatus.PENDING
            delivery.attempt_count = max(delivery.attempt_count - 1, 0)
        elif delivery.status != DeliveryStatus.PENDING:
            return

        delivery.updated_at = self._clock.now()
        self.retry_queue.push(delivery)
        await self._deliveries.save(delivery)
        logger.warning(f"Webhook delivery {delivery.id} interrupted mid-attempt, returned to the retry queue")

    async def retry_delivery(self, delivery_id: str) -> bool:
        """
        Operator-triggered redelivery.

        Resets the delivery to ``PENDING`` with a fresh attempt budget and
        queues it for the next tick. Delivered deliveries and deliveries the
        current tick is still sending are left alone and ``False`` is
        returned. A ``DELIVERING`` delivery that no tick is sending can be
        retried.
        """
        delivery = await self._deliveries.get(delivery_id)
        if delivery is None:
            return False
        if delivery.status == DeliveryStatus.DELIVERED or delivery.id in self._in_flight:
            return False

        delivery.status = DeliveryStatus.PENDING
        delivery.next_retry_at = None
        delivery.error = None
        delivery.error_message = None
        delivery.attempt_count = 0
        delivery.updated_at = self._clock.now()
        await self._deliveries.save(delivery)
        self.retry_queue.push(delivery)

        logger.info(f"Webhook delivery {delivery.id} queued for manual retry (subscription {delivery.subscription_id})")
        return True

    async def get_delivery(self, delivery_id: str) -> Optional[WebhookDelivery]:
        return await self._deliveries.get(delivery_id)

    async def list_deliveries(
        self, query: Optional[Union[DeliveryQuery, Mapping[str, Any]]] = None
    ) -> List[WebhookDelivery]:
        """List deliveries, newest first."""
        if query is None:
            query = DeliveryQuery()
        elif not isinstance(query, DeliveryQuery):
            try:
                query = DeliveryQuery.model_validate(query)
            except PydanticValidationError as e:
                errors = e.errors(include_url=False, include_context=False, include_input=False)
                raise ValidationError("Invalid delivery filter", details={"errors": errors}) from e

        deliveries = await self._deliveries.list()

        if query.subscription_ids:
            deliveries = [d for d in deliveries if d.subscription_id in query.subscription_ids]
        if query.statuses:
            deliveries = [d for d in deliveries if d.status in query.statuses]
        if query.types:
            deliveries = [d for d in deliveries if d.payload.type in query.types]
        if query.start_date:
            deliveries = [d for d in deliveries if d.created_at >= query.start_date]
        if query.end_date:
            deliveries = [d for d in deliveries if d.created_at <= query.end_date]

        return sorted(reversed(deliveries), key=lambda delivery: delivery.created_at, reverse=True)
