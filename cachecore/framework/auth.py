"""Shared-secret authorization for scheduled refresh endpoints."""

import hmac
from typing import Optional

import structlog


logger = structlog.get_logger()

BEARER_PREFIX = "Bearer "


def is_secret_equal(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; a missing value on either side never matches."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX):].strip() or None


def is_authorized(authorization: Optional[str], secret: Optional[str]) -> bool:
    """True when the header carries the configured secret as a bearer token."""
    if not secret:
        logger.warning("Cron secret not configured, rejecting request")
        return False
    return is_secret_equal(bearer_token(authorization), secret)
