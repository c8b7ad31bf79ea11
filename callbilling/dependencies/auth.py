# callbilling/dependencies/auth.py
import logging
import secrets
from typing import Optional, Tuple

from fastapi import Header, HTTPException, status
from pydantic import BaseModel

from callbilling.config import get_settings

logger = logging.getLogger(__name__)


class AdminContext(BaseModel):
    # Free-form operator identity, stored as `created_by` on transactions
    user: Optional[str] = None


def check_webhook_token(token: Optional[str]) -> Optional[Tuple[int, str]]:
    """
    Verify the provider's shared secret.

    Returns None when the token is valid, otherwise (status_code, message)
    for the caller to render in the webhook error shape.
    """
    secret = get_settings().WEBHOOK_SECRET
    if not secret:
        logger.error("WEBHOOK_SECRET not configured; rejecting webhook")
        return status.HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error"

    if not token:
        logger.warning("Webhook rejected: missing token header")
        return status.HTTP_401_UNAUTHORIZED, "Unauthorized: Missing API token"

    if not secrets.compare_digest(token, secret):
        logger.warning("Webhook rejected: invalid token")
        return status.HTTP_401_UNAUTHORIZED, "Unauthorized: Invalid API token"

    return None


def require_admin(
    x_admin_key: Optional[str] = Header(None),
    x_admin_user: Optional[str] = Header(None),
) -> AdminContext:
    """FastAPI dependency guarding the admin credit and agent endpoints."""
    admin_key = get_settings().ADMIN_API_KEY
    if not admin_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API not configured",
        )

    if not x_admin_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing admin key",
        )

    if not secrets.compare_digest(x_admin_key, admin_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: admin key required",
        )

    return AdminContext(user=x_admin_user)
