"""Webhook Pydantic schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, HttpUrl


class WebhookCreateRequest(BaseModel):
    """Webhook registration request."""

    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    url: HttpUrl = Field(..., description="Destination URL")
    events: list[str] = Field(..., min_length=1, description="Subscribed event types")
    secret_key: str | None = Field(
        None, description="Shared signing secret (generated when omitted)"
    )
    max_retries: int = Field(3, ge=0, le=10, description="Retries after the first attempt")
    retry_delay_seconds: int = Field(60, ge=1, le=3600, description="Delay between attempts")
    timeout_seconds: int = Field(30, ge=1, le=300, description="Per-attempt timeout")


class WebhookUpdateRequest(BaseModel):
    """Partial webhook update. Omitted fields are left unchanged."""

    name: str | None = Field(None, min_length=1, max_length=255)
    url: HttpUrl | None = None
    events: list[str] | None = Field(None, min_length=1)
    is_active: bool | None = None
    max_retries: int | None = Field(None, ge=0, le=10)
    retry_delay_seconds: int | None = Field(None, ge=1, le=3600)
    timeout_seconds: int | None = Field(None, ge=1, le=300)


class WebhookResponse(BaseModel):
    """Webhook registration response (secret omitted)."""

    id: UUID = Field(..., description="Unique endpoint identifier")
    name: str = Field(..., description="Display name")
    url: str = Field(..., description="Destination URL")
    events: list[str] = Field(..., description="Subscribed event types")
    is_active: bool = Field(..., description="Whether endpoint is active")
    max_retries: int
    retry_delay_seconds: int
    timeout_seconds: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class WebhookCreatedResponse(WebhookResponse):
    """Creation response. The only time the secret is returned."""

    secret_key: str = Field(..., description="Shared signing secret")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class WebhookListResponse(BaseModel):
    webhooks: list[WebhookResponse]
    pagination: Pagination


class WebhookDeliveryResponse(BaseModel):
    """Webhook delivery log entry response."""

    id: UUID = Field(..., description="Delivery record ID")
    webhook_id: UUID = Field(..., description="Target endpoint ID")
    event_type: str = Field(..., description="Event type")
    payload: dict[str, Any] = Field(..., description="Envelope that was sent")
    status: str = Field(..., description="Delivery status: success, failed")
    response_status: int | None = Field(None, description="HTTP response status code")
    response_body: str | None = Field(None, description="Captured response body")
    error_message: str | None = Field(None, description="Last error if failed")
    attempt_number: int = Field(..., description="Number of delivery attempts")
    delivered_at: datetime = Field(..., description="When the sequence completed")

    model_config = {"from_attributes": True}


class WebhookTestResponse(BaseModel):
    """Result of a test delivery."""

    success: bool
    attempt_count: int
    http_status: int | None = None
    error_message: str | None = None
