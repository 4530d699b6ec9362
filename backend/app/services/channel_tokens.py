"""Short-lived tokens that authorize opening a user's alarm channel.

A channel token is independent from the session access token: it is signed
with its own key, carries a dedicated scope and names a single user, so a
leaked channel token only allows reading that user's alarm stream until it
expires.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from jose import ExpiredSignatureError, JWTError, jwt

from app.core.config import settings

CHANNEL_TOKEN_SCOPE = "alarm-channel"
CHANNEL_TOKEN_ALGORITHM = "HS256"
# Never change: rotating the salt invalidates every outstanding channel token
SALT_CHANNEL_TOKEN = b"alarm-channel-token"


class ChannelTokenError(Exception):
    """Raised when a channel token cannot be used to open a channel."""


class InvalidChannelTokenError(ChannelTokenError):
    pass


class ExpiredChannelTokenError(ChannelTokenError):
    pass


@dataclass(frozen=True)
class ChannelToken:
    token: str
    user_id: int
    expires_in: int
    expires_at: datetime


@lru_cache
def _signing_key() -> str:
    if settings.CHANNEL_TOKEN_SECRET:
        return settings.CHANNEL_TOKEN_SECRET
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=SALT_CHANNEL_TOKEN,
        info=b"channel-token-signing-key",
    )
    return hkdf.derive(settings.SECRET_KEY.encode()).hex()


def issue_channel_token(
    user_id: int,
    *,
    now: datetime | None = None,
    expires_seconds: int | None = None,
) -> ChannelToken:
    issued_at = now or datetime.now(timezone.utc)
    expires_in = expires_seconds if expires_seconds is not None else settings.CHANNEL_TOKEN_EXPIRE_SECONDS
    expires_at = issued_at + timedelta(seconds=expires_in)
    claims = {
        "sub": str(user_id),
        "scope": CHANNEL_TOKEN_SCOPE,
        "jti": secrets.token_urlsafe(16),
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(claims, _signing_key(), algorithm=CHANNEL_TOKEN_ALGORITHM)
    return ChannelToken(token=token, user_id=user_id, expires_in=expires_in, expires_at=expires_at)


def verify_channel_token(token: str) -> int:
    """Return the user id a channel token was issued for."""
    if not token:
        raise InvalidChannelTokenError("Missing channel token")
    try:
        claims = jwt.decode(token, _signing_key(), algorithms=[CHANNEL_TOKEN_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ExpiredChannelTokenError("Channel token expired") from exc
    except JWTError as exc:
        raise InvalidChannelTokenError("Invalid channel token") from exc

    if claims.get("scope") != CHANNEL_TOKEN_SCOPE:
        raise InvalidChannelTokenError("Token is not a channel token")
    subject = claims.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError) as exc:
        raise InvalidChannelTokenError("Invalid channel token subject") from exc
