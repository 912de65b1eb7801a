"""Legal Help Webhooks - Main application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from legalhelp import __version__
from legalhelp.auth.rate_limit import limiter
from legalhelp.config import get_settings
from legalhelp.db.session import async_session_maker
from legalhelp.metrics import router as metrics_router
from legalhelp.valkey import close_valkey
from legalhelp.webhooks.dispatcher import create_dispatcher
from legalhelp.webhooks.router import router as webhooks_router
from legalhelp.webhooks.worker import WebhookWorker

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    worker = None
    if not settings.TESTING:
        worker = WebhookWorker(
            create_dispatcher(async_session_maker),
            max_concurrency=settings.WEBHOOK_WORKER_CONCURRENCY,
        )
        await worker.start()
    yield
    # Cleanup on shutdown
    if worker is not None:
        await worker.stop()
    await close_valkey()


app = FastAPI(
    title="Legal Help Webhooks",
    description="""
## Webhook delivery API

Register HTTPS endpoints to receive signed event notifications from Singapore Legal Help.

### Delivery

- Each event is POSTed as JSON: `{event_type, data, timestamp, webhook_id}`
- When the endpoint has a secret, `X-Webhook-Signature: sha256=<hex>` carries the
  HMAC-SHA256 of the exact request body
- Any 2xx response is a success; anything else is retried up to `max_retries` times,
  `retry_delay_seconds` apart
- Every delivery sequence is written to the delivery log

### Access

Webhooks are available on the premium and enterprise subscriptions. Send the
identity provider's access token as `Authorization: Bearer <token>`.
    """,
    version=__version__,
    lifespan=lifespan,
)

# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes - all under /api/v1
API_PREFIX = "/api/v1"
app.include_router(webhooks_router, prefix=API_PREFIX)

# Metrics at root level (for Prometheus scraping)
app.include_router(metrics_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Legal Help Webhooks",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
