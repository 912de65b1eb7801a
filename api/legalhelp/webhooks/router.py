"""Webhook management API router."""

import json
import logging
import math
import secrets
import uuid
from collections.abc import AsyncGenerator
from dataclasses import replace
from datetime import UTC, datetime

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from legalhelp.auth.jwt import CurrentUser, require_webhook_tier
from legalhelp.auth.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from legalhelp.config import get_settings
from legalhelp.db.session import get_db, get_session_factory
from legalhelp.webhooks.dispatcher import create_dispatcher
from legalhelp.webhooks.endpoint import WebhookEndpoint
from legalhelp.webhooks.event import isoformat_utc
from legalhelp.webhooks.models import WebhookConfiguration, WebhookDelivery
from legalhelp.webhooks.schemas import (
    Pagination,
    WebhookCreatedResponse,
    WebhookCreateRequest,
    WebhookDeliveryResponse,
    WebhookListResponse,
    WebhookResponse,
    WebhookTestResponse,
    WebhookUpdateRequest,
)
from legalhelp.webhooks.signer import WebhookSigner

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

TEST_EVENT_TYPE = "webhook.test"
TEST_EVENT_DATA = {"message": "This is a test webhook"}


async def get_webhook_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Dependency for the outbound HTTP client."""
    async with httpx.AsyncClient(follow_redirects=False) as client:
        yield client


async def validate_webhook_url(client: httpx.AsyncClient, url: str, secret_key: str) -> bool:
    """Send a signed test payload and report whether the endpoint answered 2xx."""
    body = json.dumps(
        {
            "event": TEST_EVENT_TYPE,
            "timestamp": isoformat_utc(datetime.now(UTC)),
            "data": TEST_EVENT_DATA,
        },
        separators=(",", ":"),
    )
    headers = WebhookSigner.get_headers(body, secret_key, settings.WEBHOOK_USER_AGENT)
    try:
        response = await client.post(
            url,
            content=body.encode("utf-8"),
            headers=headers,
            timeout=settings.WEBHOOK_VALIDATION_TIMEOUT_SECONDS,
        )
    except (httpx.RequestError, httpx.InvalidURL) as e:
        logger.warning("Webhook URL validation failed for %s: %s", url, e)
        return False
    return response.is_success


async def _get_owned_webhook(
    db: AsyncSession,
    webhook_id: uuid.UUID,
    user: CurrentUser,
) -> WebhookConfiguration:
    result = await db.execute(
        select(WebhookConfiguration).where(
            WebhookConfiguration.id == webhook_id,
            WebhookConfiguration.user_id == user.id,
        )
    )
    webhook = result.scalar_one_or_none()
    if webhook is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")
    return webhook


async def _count_webhooks(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(WebhookConfiguration)
        .where(WebhookConfiguration.user_id == user_id)
    )
    return result.scalar_one()


@router.get("", response_model=WebhookListResponse)
@limiter.limit(READ_LIMIT)
async def list_webhooks(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    active: bool | None = Query(None, description="Filter by active flag"),
    current_user: CurrentUser = Depends(require_webhook_tier),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's webhooks, newest first."""
    limit = min(limit, 100)

    query = select(WebhookConfiguration).where(WebhookConfiguration.user_id == current_user.id)
    if active is not None:
        query = query.where(WebhookConfiguration.is_active.is_(active))
    query = (
        query.order_by(desc(WebhookConfiguration.created_at))
        .offset((page - 1) * limit)
        .limit(limit)
    )

    result = await db.execute(query)
    webhooks = result.scalars().all()
    total = await _count_webhooks(db, current_user.id)

    return WebhookListResponse(
        webhooks=[WebhookResponse.model_validate(w) for w in webhooks],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
            has_next=total > page * limit,
            has_prev=page > 1,
        ),
    )


@router.post("", response_model=WebhookCreatedResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
async def create_webhook(
    request: Request,
    body: WebhookCreateRequest,
    current_user: CurrentUser = Depends(require_webhook_tier),
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_webhook_client),
):
    """Register a webhook endpoint.

    The URL is checked with a signed ``webhook.test`` payload and must answer
    with a 2xx status. The secret is returned only in this response.
    """
    max_webhooks = settings.webhook_limit_for(current_user.subscription_tier)
    if await _count_webhooks(db, current_user.id) >= max_webhooks:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Webhook limit reached. Maximum: {max_webhooks}",
        )

    secret_key = body.secret_key or secrets.token_hex(32)
    url = str(body.url)

    if not await validate_webhook_url(client, url, secret_key):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                "Webhook URL validation failed. Please ensure the endpoint is "
                "accessible and returns a 200 status."
            ),
        )

    webhook = WebhookConfiguration(
        id=uuid.uuid4(),
        user_id=current_user.id,
        name=body.name,
        url=url,
        events=body.events,
        secret_key=secret_key,
        max_retries=body.max_retries,
        retry_delay_seconds=body.retry_delay_seconds,
        timeout_seconds=body.timeout_seconds,
        is_active=True,
    )
    db.add(webhook)
    await db.commit()
    await db.refresh(webhook)
    logger.info("Created webhook %s for user %s", webhook.id, current_user.id)

    return WebhookCreatedResponse(
        **WebhookResponse.model_validate(webhook).model_dump(),
        secret_key=secret_key,
    )


@router.get("/{webhook_id}", response_model=WebhookResponse)
@limiter.limit(READ_LIMIT)
async def get_webhook(
    request: Request,
    webhook_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_webhook_tier),
    db: AsyncSession = Depends(get_db),
):
    """Get one of the caller's webhooks."""
    return await _get_owned_webhook(db, webhook_id, current_user)


@router.patch("/{webhook_id}", response_model=WebhookResponse)
@limiter.limit(WRITE_LIMIT)
async def update_webhook(
    request: Request,
    webhook_id: uuid.UUID,
    body: WebhookUpdateRequest,
    current_user: CurrentUser = Depends(require_webhook_tier),
    db: AsyncSession = Depends(get_db),
):
    """Update one of the caller's webhooks."""
    webhook = await _get_owned_webhook(db, webhook_id, current_user)

    changes = body.model_dump(exclude_unset=True)
    if "url" in changes and changes["url"] is not None:
        changes["url"] = str(changes["url"])
    for field_name, value in changes.items():
        if value is None:
            continue
        setattr(webhook, field_name, value)

    await db.commit()
    await db.refresh(webhook)
    return webhook


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(WRITE_LIMIT)
async def delete_webhook(
    request: Request,
    webhook_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_webhook_tier),
    db: AsyncSession = Depends(get_db),
):
    """Delete one of the caller's webhooks."""
    webhook = await _get_owned_webhook(db, webhook_id, current_user)
    await db.delete(webhook)
    await db.commit()
    logger.info("Deleted webhook %s for user %s", webhook_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{webhook_id}/deliveries", response_model=list[WebhookDeliveryResponse])
@limiter.limit(READ_LIMIT)
async def list_deliveries(
    request: Request,
    webhook_id: uuid.UUID,
    limit: int = Query(100, ge=1, le=1000, description="Maximum results"),
    current_user: CurrentUser = Depends(require_webhook_tier),
    db: AsyncSession = Depends(get_db),
):
    """List recent deliveries of one of the caller's webhooks."""
    await _get_owned_webhook(db, webhook_id, current_user)

    result = await db.execute(
        select(WebhookDelivery)
        .where(WebhookDelivery.webhook_id == webhook_id)
        .order_by(desc(WebhookDelivery.delivered_at))
        .limit(limit)
    )
    return result.scalars().all()


@router.post("/{webhook_id}/test", response_model=WebhookTestResponse)
@limiter.limit(WRITE_LIMIT)
async def test_webhook(
    request: Request,
    webhook_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_webhook_tier),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    client: httpx.AsyncClient = Depends(get_webhook_client),
):
    """Send a single ``webhook.test`` delivery and record it in the delivery log."""
    webhook = await _get_owned_webhook(db, webhook_id, current_user)

    # One attempt only: the caller is waiting on the response
    endpoint = replace(WebhookEndpoint.from_model(webhook), max_retries=0)
    dispatcher = create_dispatcher(session_factory, client=client)
    result = await dispatcher.deliver_to_endpoint(endpoint, TEST_EVENT_TYPE, TEST_EVENT_DATA)

    return WebhookTestResponse(
        success=result.success,
        attempt_count=result.attempt_count,
        http_status=result.http_status,
        error_message=result.error_message,
    )
