"""
Internal API key for service-to-service calls (e.g. back-office tooling that
records orders taken outside the hosted checkout).

An unset INTERNAL_API_KEY falls back to an insecure default with a loud
warning so local development works while production misconfiguration is
still surfaced.
"""
import os
import secrets
import warnings

_INSECURE_DEFAULT = "insecure-default-change-me"


def _configured_key() -> str:
    key = os.getenv("INTERNAL_API_KEY", "")
    if not key:
        warnings.warn(
            "INTERNAL_API_KEY is not set. Using an insecure default. "
            "Set this env var in production!",
            stacklevel=3,
        )
        key = _INSECURE_DEFAULT
    return key


INTERNAL_API_KEY: str = _configured_key()


def verify_api_key(provided_key: str | None) -> bool:
    """Verify an API key using constant-time comparison."""
    if not provided_key:
        return False
    return secrets.compare_digest(str(provided_key), str(INTERNAL_API_KEY))
