from .jwt_handler import create_access_token, verify_access_token
from .api_key import verify_api_key
from .dependencies import Caller, get_caller, get_current_user, require_admin, verify_internal_api_key
from .rate_limiter import limiter, caller_or_ip, checkout_rate_limit

__all__ = [
    "create_access_token",
    "verify_access_token",
    "verify_api_key",
    "Caller",
    "get_caller",
    "get_current_user",
    "require_admin",
    "verify_internal_api_key",
    "limiter",
    "caller_or_ip",
    "checkout_rate_limit",
]
