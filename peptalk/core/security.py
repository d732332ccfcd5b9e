from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status

from peptalk.core.config import settings

INTERNAL_SECRET_HEADER = "X-Internal-Secret"


def secret_matches(provided: str | None, expected: str) -> bool:
    """Constant-time comparison; an unset server secret never matches."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def require_internal_secret(
    x_internal_secret: str | None = Header(default=None, alias=INTERNAL_SECRET_HEADER),
) -> None:
    if not secret_matches(x_internal_secret, settings.internal_api_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal secret",
        )
