"""Prometheus metrics endpoint."""

from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from legalhelp.db.session import get_db
from legalhelp.webhooks.models import DeliveryStatus, WebhookConfiguration, WebhookDelivery

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(db: AsyncSession = Depends(get_db)):
    """Prometheus-compatible metrics endpoint."""

    metrics_output = []

    # Endpoint registrations
    result = await db.execute(select(func.count()).select_from(WebhookConfiguration))
    metrics_output.append(f"legalhelp_webhook_endpoints_total {result.scalar_one()}")

    result = await db.execute(
        select(func.count())
        .select_from(WebhookConfiguration)
        .where(WebhookConfiguration.is_active.is_(True))
    )
    metrics_output.append(f"legalhelp_webhook_endpoints_active {result.scalar_one()}")

    # Delivery outcomes (last 24h)
    since = datetime.now(UTC) - timedelta(hours=24)
    result = await db.execute(
        select(WebhookDelivery.status, func.count())
        .where(WebhookDelivery.delivered_at > since)
        .group_by(WebhookDelivery.status)
    )
    counts = {status.value: 0 for status in DeliveryStatus}
    for status, count in result.all():
        counts[status] = count
    for status, count in counts.items():
        metrics_output.append(f'legalhelp_webhook_deliveries_24h{{status="{status}"}} {count}')

    return "\n".join(metrics_output) + "\n"
