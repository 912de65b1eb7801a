"""Read-only view of a webhook endpoint registration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from legalhelp.webhooks.models import WebhookConfiguration


@dataclass(frozen=True)
class WebhookEndpoint:
    """Webhook endpoint as seen by the dispatcher."""

    id: str
    user_id: str
    url: str
    events: frozenset[str] = field(default_factory=frozenset)
    is_active: bool = True
    secret: str | None = None
    max_retries: int = 3
    retry_delay_seconds: float = 60
    timeout_seconds: float = 30

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this endpoint subscribes to the given event type."""
        return event_type in self.events

    @classmethod
    def from_model(cls, row: WebhookConfiguration) -> WebhookEndpoint:
        """Build the dispatcher view from a stored registration."""
        return cls(
            id=str(row.id),
            user_id=row.user_id,
            url=row.url,
            events=frozenset(row.events or ()),
            is_active=row.is_active,
            # An empty secret means "unsigned", same as a missing one
            secret=row.secret_key or None,
            max_retries=max(0, row.max_retries),
            retry_delay_seconds=row.retry_delay_seconds,
            timeout_seconds=row.timeout_seconds,
        )
