"""Webhook event and envelope data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def isoformat_utc(moment: datetime) -> str:
    """Format a timestamp as ISO-8601 UTC with millisecond precision and a Z suffix."""
    moment = moment.astimezone(UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class WebhookEvent:
    """An event queued for delivery to one user's endpoints."""

    user_id: str
    event_type: str
    data: Any
    event_id: uuid.UUID = field(default_factory=uuid.uuid4)
    queued_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_payload(self) -> dict[str, Any]:
        """Convert to JSON-serializable queue message."""
        return {
            "event_id": str(self.event_id),
            "user_id": self.user_id,
            "event_type": self.event_type,
            "queued_at": self.queued_at.isoformat(),
            "data": self.data,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> WebhookEvent:
        """Create WebhookEvent from a queue message."""
        return cls(
            event_id=uuid.UUID(payload["event_id"]),
            user_id=payload["user_id"],
            event_type=payload["event_type"],
            queued_at=datetime.fromisoformat(payload["queued_at"]),
            data=payload["data"],
        )


@dataclass
class WebhookEnvelope:
    """The JSON object transmitted to an endpoint."""

    event_type: str
    data: Any
    webhook_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_payload(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "data": self.data,
            "timestamp": isoformat_utc(self.timestamp),
            "webhook_id": self.webhook_id,
        }

    def serialize(self) -> str:
        """Serialize to the compact JSON text that is both signed and sent."""
        return json.dumps(
            self.to_payload(),
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
