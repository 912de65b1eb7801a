from .jwt import CurrentUser, get_current_user, require_webhook_tier, verify_token
from .rate_limit import limiter

__all__ = [
    "CurrentUser",
    "get_current_user",
    "require_webhook_tier",
    "verify_token",
    "limiter",
]
