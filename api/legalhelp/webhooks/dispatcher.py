"""Webhook dispatcher: signed delivery with bounded retries."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from legalhelp.config import get_settings
from legalhelp.webhooks.endpoint import WebhookEndpoint
from legalhelp.webhooks.event import WebhookEnvelope
from legalhelp.webhooks.models import DeliveryStatus
from legalhelp.webhooks.repository import (
    DeliveryLog,
    DeliveryRecord,
    EndpointRepository,
    SqlDeliveryLog,
    SqlEndpointRepository,
)
from legalhelp.webhooks.signer import WebhookSigner

logger = logging.getLogger(__name__)

# Upper bound on stored error text
MAX_ERROR_LENGTH = 500


class DeliveryState(str, Enum):
    """Progress of a delivery sequence to one endpoint."""

    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class DeliveryResult:
    """Result of a delivery sequence to one endpoint."""

    webhook_id: str
    state: DeliveryState = DeliveryState.PENDING
    attempt_count: int = 0
    http_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    body: str = ""

    @property
    def success(self) -> bool:
        return self.state is DeliveryState.SUCCESS


@dataclass
class _AttemptOutcome:
    ok: bool
    http_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None


class WebhookDispatcher:
    """Delivers events to a user's subscribed webhook endpoints."""

    def __init__(
        self,
        endpoints: EndpointRepository,
        delivery_log: DeliveryLog,
        *,
        client: httpx.AsyncClient | None = None,
        user_agent: str | None = None,
        concurrent: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        """
        Initialize the dispatcher.

        Args:
            endpoints: Source of endpoint registrations
            delivery_log: Sink for delivery summaries
            client: Shared HTTP client; when omitted one is opened per dispatch
            user_agent: User-Agent header value (defaults to settings)
            concurrent: Deliver to a user's endpoints concurrently instead of in order
            sleep: Coroutine used to wait between attempts
            clock: Source of envelope and log timestamps
        """
        self._endpoints = endpoints
        self._delivery_log = delivery_log
        self._client = client
        self._user_agent = user_agent or get_settings().WEBHOOK_USER_AGENT
        self._concurrent = concurrent
        self._sleep = sleep
        self._clock = clock

    async def notify(self, user_id: str, event_type: str, event_data: Any) -> None:
        """Deliver an event to every matching endpoint. Never raises."""
        await self.dispatch(user_id, event_type, event_data)

    async def dispatch(
        self,
        user_id: str,
        event_type: str,
        event_data: Any,
    ) -> list[DeliveryResult]:
        """Deliver an event to every matching endpoint and return per-endpoint results."""
        try:
            endpoints = await self._endpoints.list_for_event(user_id, event_type)
        except Exception as e:
            logger.error("Error fetching webhooks for user %s: %s", user_id, e)
            return []

        if not endpoints:
            logger.debug("No webhooks for user %s subscribe to %s", user_id, event_type)
            return []

        async with self._client_scope() as client:
            deliveries = [
                self._deliver_isolated(client, endpoint, event_type, event_data)
                for endpoint in endpoints
            ]
            if self._concurrent:
                return list(await asyncio.gather(*deliveries))

            results = []
            for delivery in deliveries:
                results.append(await delivery)
            return results

    async def deliver_to_endpoint(
        self,
        endpoint: WebhookEndpoint,
        event_type: str,
        event_data: Any,
    ) -> DeliveryResult:
        """Run one delivery sequence to a single endpoint and record its outcome."""
        async with self._client_scope() as client:
            return await self._deliver(client, endpoint, event_type, event_data)

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(follow_redirects=False) as client:
            yield client

    async def _deliver_isolated(
        self,
        client: httpx.AsyncClient,
        endpoint: WebhookEndpoint,
        event_type: str,
        event_data: Any,
    ) -> DeliveryResult:
        try:
            return await self._deliver(client, endpoint, event_type, event_data)
        except Exception as e:
            logger.exception("Webhook delivery to %s aborted", endpoint.id)
            return DeliveryResult(
                webhook_id=endpoint.id,
                state=DeliveryState.FAILED,
                error_message=str(e)[:MAX_ERROR_LENGTH],
            )

    async def _deliver(
        self,
        client: httpx.AsyncClient,
        endpoint: WebhookEndpoint,
        event_type: str,
        event_data: Any,
    ) -> DeliveryResult:
        envelope = WebhookEnvelope(
            event_type=event_type,
            data=event_data,
            webhook_id=endpoint.id,
            timestamp=self._clock(),
        )
        body = envelope.serialize()
        headers = WebhookSigner.get_headers(body, endpoint.secret, self._user_agent)

        result = DeliveryResult(webhook_id=endpoint.id, body=body)
        attempts = 0

        while attempts <= endpoint.max_retries:
            result.state = DeliveryState.ATTEMPTING
            outcome = await self._attempt(client, endpoint, body, headers)
            result.http_status = outcome.http_status

            if outcome.ok:
                result.state = DeliveryState.SUCCESS
                result.attempt_count = attempts + 1
                result.response_body = outcome.response_body
                result.error_message = None
                logger.info(
                    "Webhook delivered to %s (event: %s, status: %d, attempt: %d)",
                    endpoint.id,
                    event_type,
                    outcome.http_status,
                    result.attempt_count,
                )
                break

            result.error_message = outcome.error_message
            attempts += 1
            logger.warning(
                "Webhook delivery to %s failed (attempt %d/%d): %s",
                endpoint.id,
                attempts,
                endpoint.max_retries + 1,
                outcome.error_message,
            )
            if attempts <= endpoint.max_retries:
                await self._sleep(endpoint.retry_delay_seconds)

        if not result.success:
            result.state = DeliveryState.FAILED
            result.attempt_count = attempts
            logger.error(
                "Webhook delivery to %s failed after %d attempts: %s",
                endpoint.id,
                attempts,
                result.error_message,
            )

        await self._record(endpoint, event_type, envelope.to_payload(), result)
        return result

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        endpoint: WebhookEndpoint,
        body: str,
        headers: dict[str, str],
    ) -> _AttemptOutcome:
        """Issue a single POST and classify the response."""
        try:
            response = await client.post(
                endpoint.url,
                content=body.encode("utf-8"),
                headers=headers,
                timeout=endpoint.timeout_seconds,
            )
        except httpx.TimeoutException:
            return _AttemptOutcome(ok=False, error_message="Request timeout")
        except (httpx.RequestError, httpx.InvalidURL) as e:
            return _AttemptOutcome(
                ok=False,
                error_message=(str(e) or e.__class__.__name__)[:MAX_ERROR_LENGTH],
            )

        if response.is_success:
            return _AttemptOutcome(
                ok=True,
                http_status=response.status_code,
                response_body=_read_body(response),
            )

        return _AttemptOutcome(
            ok=False,
            http_status=response.status_code,
            error_message=f"HTTP {response.status_code}: {response.reason_phrase}",
        )

    async def _record(
        self,
        endpoint: WebhookEndpoint,
        event_type: str,
        payload: dict[str, Any],
        result: DeliveryResult,
    ) -> None:
        """Append the delivery summary; failures here are logged only."""
        record = DeliveryRecord(
            webhook_id=endpoint.id,
            event_type=event_type,
            payload=payload,
            status=DeliveryStatus.SUCCESS if result.success else DeliveryStatus.FAILED,
            attempt_number=result.attempt_count,
            delivered_at=self._clock(),
            response_status=result.http_status if result.success else None,
            response_body=result.response_body if result.success else None,
            error_message=None if result.success else result.error_message,
        )
        try:
            await self._delivery_log.record(record)
        except Exception as e:
            logger.error("Failed to log webhook delivery for %s: %s", endpoint.id, e)


def _read_body(response: httpx.Response) -> str:
    """Best-effort capture of a response body."""
    try:
        return response.text
    except (httpx.HTTPError, httpx.StreamError, LookupError, UnicodeDecodeError):
        return ""


def create_dispatcher(
    session_factory: async_sessionmaker[AsyncSession],
    client: httpx.AsyncClient | None = None,
) -> WebhookDispatcher:
    """Build a dispatcher backed by the database."""
    settings = get_settings()
    return WebhookDispatcher(
        SqlEndpointRepository(session_factory),
        SqlDeliveryLog(session_factory),
        client=client,
        user_agent=settings.WEBHOOK_USER_AGENT,
        concurrent=settings.WEBHOOK_CONCURRENT_DELIVERY,
    )
