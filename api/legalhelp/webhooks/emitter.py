"""Webhook event emitter."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from legalhelp.db.session import async_session_maker
from legalhelp.valkey import get_valkey
from legalhelp.webhooks.event import WebhookEvent
from legalhelp.webhooks.repository import EndpointRepository, SqlEndpointRepository

logger = logging.getLogger(__name__)

# Queue key for webhook events
WEBHOOK_QUEUE_KEY = "webhook:events"


def _is_testing() -> bool:
    """Check if running in test environment."""
    return os.environ.get("TESTING") == "1"


class WebhookEmitter:
    """Emits webhook events to the queue for async delivery."""

    @staticmethod
    async def emit(
        user_id: str,
        event_type: str,
        data: Any,
        endpoints: EndpointRepository | None = None,
    ) -> WebhookEvent | None:
        """
        Queue a webhook event for delivery to a user's endpoints.

        The event is only queued when the user has at least one active
        endpoint subscribed to the event type. The worker looks the
        endpoints up again at delivery time, so registrations changed in
        between are honoured.

        Args:
            user_id: Owner of the endpoints to notify
            event_type: The event type (e.g., "subscription.updated")
            data: JSON-serializable event data
            endpoints: Endpoint lookup; defaults to the database

        Returns:
            The queued WebhookEvent, or None if skipped, nobody is
            subscribed, or the lookup or queue failed
        """
        if _is_testing():
            logger.debug("Skipping webhook emission in test environment")
            return None

        if endpoints is None:
            endpoints = SqlEndpointRepository(async_session_maker)

        try:
            subscribed = await endpoints.list_for_event(user_id, event_type)
        except Exception as e:
            logger.error("Failed to look up webhook endpoints for user %s: %s", user_id, e)
            return None

        if not subscribed:
            logger.debug("No webhook endpoints for event %s (user %s)", event_type, user_id)
            return None

        event = WebhookEvent(user_id=user_id, event_type=event_type, data=data)

        try:
            message = json.dumps(event.to_payload(), allow_nan=False)
            client = await get_valkey()
            await client.rpush(WEBHOOK_QUEUE_KEY, message)
            logger.info(
                "Queued webhook event %s (type: %s) for user %s",
                event.event_id,
                event_type,
                user_id,
            )
        except Exception as e:
            logger.error("Failed to queue webhook event: %s", e)
            return None

        return event
