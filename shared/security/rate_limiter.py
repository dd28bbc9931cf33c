from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from shared.config import settings
from .jwt_handler import verify_access_token

def caller_or_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    Uses the bearer token subject when present so a signed-in shopper is
    limited across devices; anonymous checkouts fall back to the client IP.
    """
    auth_header = request.headers.get("Authorization")

    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        payload = verify_access_token(token)
        if payload and "sub" in payload:
            return f"user:{payload['sub']}"

    return f"ip:{get_remote_address(request)}"

def checkout_rate_limit() -> str:
    return settings.CHECKOUT_RATE_LIMIT

limiter = Limiter(key_func=caller_or_ip)
