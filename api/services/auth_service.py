"""
Bearer tokens issued by the hosted auth provider.

Tokens are HS256 JWTs signed with the project secret; `sub` carries the
auth user id. create_access_token mints equivalent tokens for local tooling.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
import structlog

from api.config import settings

logger = structlog.get_logger()


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": "authenticated",
        "iat": now,
        "exp": now + timedelta(
            minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
        ),
    }
    if email:
        claims["email"] = email
    if settings.JWT_AUDIENCE:
        claims["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> dict:
    """Decode and verify an access token. Raises JWTError on failure."""
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options={"verify_aud": bool(settings.JWT_AUDIENCE)},
    )
    if not payload.get("sub"):
        raise JWTError("Token has no subject")
    return payload
