"""Rate limiting for endpoints that mint credentials."""

from jose import JWTError
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.config import settings
from app.core.security import decode_access_token


def get_real_client_ip(request: Request) -> str:
    # X-Forwarded-For is client-controlled unless a proxy rewrites it
    if settings.BEHIND_PROXY:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()
    return get_remote_address(request)


def get_caller_key(request: Request) -> str:
    """Bucket requests by authenticated user, falling back to the client address.

    Several users behind one NAT should not share a channel-token allowance,
    while unauthenticated requests are still limited per address.
    """
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        try:
            subject = decode_access_token(credentials).sub
        except JWTError:
            subject = None
        if subject:
            return f"user:{subject}"
    return f"ip:{get_real_client_ip(request)}"


limiter = Limiter(key_func=get_caller_key)
