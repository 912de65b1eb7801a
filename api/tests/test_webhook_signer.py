"""Property-based tests for WebhookSigner."""

import hashlib
import hmac
import json
import uuid

from hypothesis import given, settings
from hypothesis import strategies as st

from legalhelp.webhooks.signer import WebhookSigner

# Strategies for generating test data
bodies = st.builds(
    lambda webhook_id, event_type, user_id: json.dumps(
        {
            "event_type": event_type,
            "data": {"user_id": str(user_id)},
            "timestamp": "2024-01-15T10:30:00.000Z",
            "webhook_id": str(webhook_id),
        },
        separators=(",", ":"),
    ),
    webhook_id=st.uuids(),
    event_type=st.sampled_from(
        [
            "subscription.created",
            "subscription.updated",
            "payment.succeeded",
            "document.generated",
        ]
    ),
    user_id=st.uuids(),
)

secrets = st.text(min_size=8, max_size=64, alphabet="abcdefghijklmnopqrstuvwxyz0123456789")


class TestWebhookSigner:
    """Tests for webhook signature generation and verification."""

    def test_known_vector(self):
        """Signature equals sha256= followed by the hex HMAC-SHA256 of the body."""
        body = '{"event_type":"x","data":{},"timestamp":"2024-01-15T10:30:00.000Z","webhook_id":"w"}'
        expected = hmac.new(b"abc", body.encode("utf-8"), hashlib.sha256).hexdigest()

        assert WebhookSigner.sign(body, "abc") == f"sha256={expected}"

    @settings(max_examples=100)
    @given(body=bodies, secret=secrets)
    def test_signature_computation_correctness(self, body: str, secret: str):
        """Signing and verifying the same body with the same secret succeeds."""
        signature = WebhookSigner.sign(body, secret)

        assert signature.startswith("sha256=")
        assert len(signature) == len("sha256=") + 64
        assert WebhookSigner.verify(body, secret, signature) is True

    @settings(max_examples=50)
    @given(body=bodies, secret=secrets)
    def test_str_and_bytes_bodies_agree(self, body: str, secret: str):
        assert WebhookSigner.sign(body, secret) == WebhookSigner.sign(body.encode("utf-8"), secret)

    @settings(max_examples=50)
    @given(body=bodies, secret=secrets)
    def test_signature_changes_with_different_body(self, body: str, secret: str):
        """Signatures should be different for different bodies."""
        assert WebhookSigner.sign(body, secret) != WebhookSigner.sign(body + " ", secret)

    @settings(max_examples=50)
    @given(body=bodies, secret=secrets)
    def test_verification_fails_with_wrong_secret(self, body: str, secret: str):
        """Verification should fail when using wrong secret."""
        signature = WebhookSigner.sign(body, secret)

        assert WebhookSigner.verify(body, secret + "wrong", signature) is False


class TestWebhookHeaders:
    """Tests for header generation."""

    def test_headers_with_secret(self):
        body = json.dumps({"webhook_id": str(uuid.uuid4())})
        headers = WebhookSigner.get_headers(body, "s3cret", "Agent/1.0")

        assert headers["Content-Type"] == "application/json"
        assert headers["User-Agent"] == "Agent/1.0"
        assert headers["X-Webhook-Signature"] == WebhookSigner.sign(body, "s3cret")

    def test_headers_without_secret(self):
        headers = WebhookSigner.get_headers("{}", None, "Agent/1.0")

        assert headers == {"Content-Type": "application/json", "User-Agent": "Agent/1.0"}

    def test_empty_secret_means_unsigned(self):
        headers = WebhookSigner.get_headers("{}", "", "Agent/1.0")

        assert "X-Webhook-Signature" not in headers
