"""Persistence collaborators for the webhook dispatcher."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from legalhelp.webhooks.endpoint import WebhookEndpoint
from legalhelp.webhooks.models import DeliveryStatus, WebhookConfiguration, WebhookDelivery

logger = logging.getLogger(__name__)


@dataclass
class DeliveryRecord:
    """Summary of one delivery sequence to one endpoint."""

    webhook_id: str
    event_type: str
    payload: dict[str, Any]
    status: DeliveryStatus
    attempt_number: int
    delivered_at: datetime
    response_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None


class EndpointRepository(Protocol):
    async def list_for_event(self, user_id: str, event_type: str) -> list[WebhookEndpoint]: ...


class DeliveryLog(Protocol):
    async def record(self, record: DeliveryRecord) -> None: ...


class SqlEndpointRepository:
    """Reads endpoint registrations from the database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_for_event(self, user_id: str, event_type: str) -> list[WebhookEndpoint]:
        """Get all active endpoints of a user subscribed to an event type."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebhookConfiguration)
                .where(
                    WebhookConfiguration.user_id == user_id,
                    WebhookConfiguration.is_active.is_(True),
                )
                .order_by(WebhookConfiguration.created_at)
            )
            rows = result.scalars().all()

        # Event membership is checked here so the query stays portable across dialects
        endpoints = [WebhookEndpoint.from_model(row) for row in rows]
        return [ep for ep in endpoints if ep.is_active and ep.subscribes_to(event_type)]


class SqlDeliveryLog:
    """Appends delivery summaries to the webhook_deliveries table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, record: DeliveryRecord) -> None:
        async with self._session_factory() as session:
            session.add(
                WebhookDelivery(
                    id=uuid.uuid4(),
                    webhook_id=uuid.UUID(record.webhook_id),
                    event_type=record.event_type,
                    payload=record.payload,
                    status=record.status.value,
                    response_status=record.response_status,
                    response_body=record.response_body,
                    error_message=record.error_message,
                    attempt_number=record.attempt_number,
                    delivered_at=record.delivered_at,
                )
            )
            await session.commit()
        logger.debug(
            "Recorded %s delivery for webhook %s (%s)",
            record.status.value,
            record.webhook_id,
            record.event_type,
        )
