from dataclasses import dataclass

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer, APIKeyHeader

from shared.config import settings
from .jwt_handler import verify_access_token
from .api_key import verify_api_key

# Defines the expected header format (Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

# Defines the expected internal service header
api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Opaque caller identity taken from a verified bearer token."""
    email: str

    @property
    def is_admin(self) -> bool:
        return bool(settings.ADMIN_EMAIL) and self.email == settings.ADMIN_EMAIL

    def can_access(self, customer_email: str) -> bool:
        return self.is_admin or self.email == customer_email


async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)) -> str:
    """Dependency to validate JWT and return the caller's email (sub)."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    payload = verify_access_token(token)
    if payload is None:
        raise credentials_exception

    subject: str = payload.get("sub")
    if subject is None:
        raise credentials_exception

    # Store in request state for downstream use (like rate limiting)
    request.state.user_id = subject
    return subject

async def get_caller(subject: str = Depends(get_current_user)) -> Caller:
    return Caller(email=subject.strip().lower())

async def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    """Dependency for administrative routes: the caller must be ADMIN_EMAIL."""
    if not caller.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return caller

async def verify_internal_api_key(api_key: str = Depends(api_key_header)) -> bool:
    """Dependency to validate service-to-service internal requests."""
    if not verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing X-Internal-API-Key header"
        )
    return True
