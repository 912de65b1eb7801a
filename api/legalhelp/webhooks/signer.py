"""Webhook payload signer using HMAC-SHA256."""

import hashlib
import hmac


class WebhookSigner:
    """Signs webhook payloads for verification."""

    SIGNATURE_PREFIX = "sha256="
    SIGNATURE_HEADER = "X-Webhook-Signature"

    @staticmethod
    def sign(body: str | bytes, secret: str) -> str:
        """
        Generate HMAC-SHA256 signature for a webhook body.

        Args:
            body: The exact serialized JSON body that will be transmitted
            secret: The shared secret key

        Returns:
            Signature in the form ``sha256=<hex digest>``
        """
        if isinstance(body, str):
            body = body.encode("utf-8")

        signature = hmac.new(
            secret.encode("utf-8"),
            body,
            hashlib.sha256,
        ).hexdigest()

        return f"{WebhookSigner.SIGNATURE_PREFIX}{signature}"

    @staticmethod
    def verify(body: str | bytes, secret: str, signature: str) -> bool:
        """
        Verify a webhook signature.

        Args:
            body: The received request body
            secret: The shared secret key
            signature: The value of the X-Webhook-Signature header

        Returns:
            True if signature is valid, False otherwise
        """
        expected_signature = WebhookSigner.sign(body, secret)
        return hmac.compare_digest(expected_signature, signature)

    @staticmethod
    def get_headers(body: str | bytes, secret: str | None, user_agent: str) -> dict[str, str]:
        """
        Generate webhook HTTP headers, including the signature when a secret is set.

        Args:
            body: The exact serialized JSON body
            secret: The endpoint's shared secret, or None for unsigned delivery
            user_agent: The fixed identifying User-Agent string

        Returns:
            Dictionary of HTTP headers
        """
        headers = {
            "Content-Type": "application/json",
            "User-Agent": user_agent,
        }
        if secret:
            headers[WebhookSigner.SIGNATURE_HEADER] = WebhookSigner.sign(body, secret)
        return headers
