import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Cookie, Depends

from .config import Settings, get_settings
from .exceptions import AuthError

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"


def issue_token(claims: dict, settings: Settings) -> str:
    payload = dict(claims)
    payload["exp"] = datetime.now(timezone.utc) + timedelta(
        days=settings.token_expiry_days
    )
    return jwt.encode(
        payload, settings.access_token_secret, algorithm=settings.token_algorithm
    )


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(
            token,
            settings.access_token_secret,
            algorithms=[settings.token_algorithm],
        )
    except jwt.InvalidTokenError as e:
        raise AuthError(f"invalid token: {e}")


def cookie_options(settings: Settings) -> dict:
    return {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "none" if settings.is_production else "strict",
    }


def verify_token(
    token: Optional[str] = Cookie(None),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Decoded claims of the ``token`` cookie; raises AuthError otherwise."""
    if not token:
        raise AuthError("missing token")
    return decode_token(token, settings)


def creator_reference(claims: dict) -> Optional[str]:
    creator = claims.get("id") or claims.get("email")
    return str(creator) if creator is not None else None
