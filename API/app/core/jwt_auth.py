"""Session tokens for learners.

The token's subject is the identity-provider user id; the local user record is
resolved from it per request, so a token stays valid across local re-syncs.
"""
import logging
from datetime import datetime, timezone, timedelta

import jwt

from app.core.settings import settings

logger = logging.getLogger(__name__)


def create_token(provider_user_id: str, email: str = "", expires_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    lifetime = expires_minutes if expires_minutes is not None else settings.jwt_expiry_minutes
    payload = {
        "sub": provider_user_id,
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=lifetime),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict | None:
    """Return the claims of a valid, unexpired token that names a subject; otherwise None."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired session token")
        return None
    except jwt.PyJWTError as exc:
        logger.info("Rejected session token | reason=%s", exc.__class__.__name__)
        return None
