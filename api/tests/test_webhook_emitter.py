"""Tests for WebhookEmitter."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeEndpointRepository

from legalhelp.webhooks.emitter import WEBHOOK_QUEUE_KEY, WebhookEmitter
from legalhelp.webhooks.endpoint import WebhookEndpoint


@pytest.fixture
def mock_valkey():
    """Mock Valkey client."""
    mock = AsyncMock()
    mock.rpush = AsyncMock(return_value=1)
    return mock


@pytest.fixture
def subscribed():
    """One active endpoint of user-1 subscribed to subscription.updated."""
    return FakeEndpointRepository(
        [
            WebhookEndpoint(
                id="wh-1",
                user_id="user-1",
                url="https://hooks.example.com/a",
                events=frozenset({"subscription.updated"}),
            )
        ]
    )


def emitting(mock_valkey):
    return (
        patch("legalhelp.webhooks.emitter._is_testing", return_value=False),
        patch("legalhelp.webhooks.emitter.get_valkey", return_value=mock_valkey),
    )


class TestWebhookEmitter:
    """Tests for WebhookEmitter."""

    @pytest.mark.asyncio
    async def test_emit_queues_event(self, mock_valkey, subscribed):
        """Test that emit() queues event to Valkey."""
        testing, valkey = emitting(mock_valkey)
        with testing, valkey:
            event = await WebhookEmitter.emit(
                "user-1", "subscription.updated", {"plan": "pro"}, endpoints=subscribed
            )

        assert event is not None
        assert event.event_type == "subscription.updated"
        assert subscribed.calls == [("user-1", "subscription.updated")]
        mock_valkey.rpush.assert_called_once()
        key, message = mock_valkey.rpush.call_args.args
        assert key == WEBHOOK_QUEUE_KEY
        assert json.loads(message) == event.to_payload()

    @pytest.mark.asyncio
    async def test_emit_skipped_in_tests(self, mock_valkey, subscribed):
        with patch("legalhelp.webhooks.emitter.get_valkey", return_value=mock_valkey):
            event = await WebhookEmitter.emit(
                "user-1", "subscription.updated", {}, endpoints=subscribed
            )

        assert event is None
        mock_valkey.rpush.assert_not_called()

    @pytest.mark.asyncio
    async def test_emit_handles_valkey_error(self, mock_valkey, subscribed):
        """Test that emit() handles Valkey errors gracefully."""
        mock_valkey.rpush = AsyncMock(side_effect=Exception("Connection failed"))

        testing, valkey = emitting(mock_valkey)
        with testing, valkey:
            event = await WebhookEmitter.emit(
                "user-1", "subscription.updated", {}, endpoints=subscribed
            )

        # Should return None on error, not raise
        assert event is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [object(), float("nan")])
    async def test_emit_handles_unserializable_data(self, mock_valkey, subscribed, value):
        testing, valkey = emitting(mock_valkey)
        with testing, valkey:
            event = await WebhookEmitter.emit(
                "user-1", "subscription.updated", {"x": value}, endpoints=subscribed
            )

        assert event is None
        mock_valkey.rpush.assert_not_called()


class TestEndpointCheck:
    """emit() only queues events somebody is subscribed to."""

    @pytest.mark.asyncio
    async def test_no_endpoints_nothing_queued(self, mock_valkey):
        endpoints = FakeEndpointRepository([])

        testing, valkey = emitting(mock_valkey)
        with testing, valkey:
            event = await WebhookEmitter.emit(
                "user-1", "subscription.updated", {}, endpoints=endpoints
            )

        assert event is None
        assert endpoints.calls == [("user-1", "subscription.updated")]
        mock_valkey.rpush.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "user_id,event_type",
        [
            ("user-2", "subscription.updated"),
            ("user-1", "payment.succeeded"),
        ],
    )
    async def test_other_owner_or_event_nothing_queued(
        self, mock_valkey, subscribed, user_id, event_type
    ):
        testing, valkey = emitting(mock_valkey)
        with testing, valkey:
            event = await WebhookEmitter.emit(user_id, event_type, {}, endpoints=subscribed)

        assert event is None
        mock_valkey.rpush.assert_not_called()

    @pytest.mark.asyncio
    async def test_inactive_endpoint_nothing_queued(self, mock_valkey):
        endpoints = FakeEndpointRepository(
            [
                WebhookEndpoint(
                    id="wh-1",
                    user_id="user-1",
                    url="https://hooks.example.com/a",
                    events=frozenset({"subscription.updated"}),
                    is_active=False,
                )
            ]
        )

        testing, valkey = emitting(mock_valkey)
        with testing, valkey:
            event = await WebhookEmitter.emit(
                "user-1", "subscription.updated", {}, endpoints=endpoints
            )

        assert event is None
        mock_valkey.rpush.assert_not_called()

    @pytest.mark.asyncio
    async def test_lookup_failure_does_not_raise(self, mock_valkey):
        endpoints = FakeEndpointRepository(error=RuntimeError("database unavailable"))

        testing, valkey = emitting(mock_valkey)
        with testing, valkey:
            event = await WebhookEmitter.emit(
                "user-1", "subscription.updated", {}, endpoints=endpoints
            )

        assert event is None
        mock_valkey.rpush.assert_not_called()

    @pytest.mark.asyncio
    async def test_defaults_to_database_lookup(self, mock_valkey, session_factory):
        testing, valkey = emitting(mock_valkey)
        with (
            testing,
            valkey,
            patch("legalhelp.webhooks.emitter.async_session_maker", session_factory),
        ):
            event = await WebhookEmitter.emit("user-1", "subscription.updated", {})

        # Empty database: nobody is subscribed
        assert event is None
        mock_valkey.rpush.assert_not_called()
