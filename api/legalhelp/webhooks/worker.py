"""Webhook delivery worker."""

from __future__ import annotations

import asyncio
import json
import logging

from legalhelp.valkey import get_valkey
from legalhelp.webhooks.dispatcher import WebhookDispatcher
from legalhelp.webhooks.emitter import WEBHOOK_QUEUE_KEY
from legalhelp.webhooks.event import WebhookEvent

logger = logging.getLogger(__name__)


class WebhookWorker:
    """Processes queued webhook events through the dispatcher.

    Each dequeued event is dispatched in its own task, so an endpoint that is
    waiting between retries does not hold up later events. At most
    ``max_concurrency`` events are in flight; the queue is not read while
    that many are running.
    """

    def __init__(self, dispatcher: WebhookDispatcher, max_concurrency: int = 10):
        self._running = False
        self._task: asyncio.Task | None = None
        self._dispatcher = dispatcher
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._in_flight: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Start processing events."""
        if self._running:
            logger.warning("WebhookWorker is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._process_loop())
        logger.info("WebhookWorker started")

    async def stop(self) -> None:
        """Stop reading the queue, then wait for in-flight events to finish."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._in_flight:
            logger.info("Waiting for %d in-flight webhook events", len(self._in_flight))
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("WebhookWorker stopped")

    async def _process_loop(self) -> None:
        """Main processing loop."""
        while self._running:
            try:
                await self._process_next_event()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in webhook worker loop: %s", e)
                await asyncio.sleep(1)  # Back off on error

    async def _process_next_event(self) -> asyncio.Task | None:
        """Take the next event from the queue and start dispatching it.

        Returns the dispatch task, or None if nothing usable was queued.
        """
        await self._semaphore.acquire()
        try:
            event = await self._next_event()
        except BaseException:
            self._semaphore.release()
            raise

        if event is None:
            self._semaphore.release()
            return None

        task = asyncio.create_task(
            self._dispatcher.notify(event.user_id, event.event_type, event.data),
            name=f"webhook-event-{event.event_id}",
        )
        self._in_flight.add(task)
        task.add_done_callback(self._event_done)
        return task

    async def _next_event(self) -> WebhookEvent | None:
        client = await get_valkey()

        # Blocking pop with timeout (1 second)
        result = await client.blpop(WEBHOOK_QUEUE_KEY, timeout=1)
        if not result:
            return None

        _, event_json = result

        try:
            return WebhookEvent.from_payload(json.loads(event_json))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error("Failed to parse webhook event: %s", e)
            return None

    def _event_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        self._semaphore.release()
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Webhook event dispatch failed (%s): %s",
                task.get_name(),
                error,
                exc_info=error,
            )
