"""Bearer token handling for tokens issued by the identity provider."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from legalhelp.config import get_settings

settings = get_settings()
security = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller."""

    id: str
    subscription_tier: str = "free"


def verify_token(token: str) -> Optional[dict]:
    """Verify and decode a JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
        return payload
    except JWTError:
        return None


def _subscription_tier(payload: dict) -> str:
    tier = payload.get("subscription_tier")
    if tier is None:
        tier = (payload.get("app_metadata") or {}).get("subscription_tier")
    return tier or "free"


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Get the current authenticated user."""
    payload = verify_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    return CurrentUser(id=str(user_id), subscription_tier=_subscription_tier(payload))


async def require_webhook_tier(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Allow only subscription tiers that include webhook access."""
    if current_user.subscription_tier not in settings.WEBHOOK_ALLOWED_TIERS:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Webhooks require a premium or enterprise subscription",
        )
    return current_user
