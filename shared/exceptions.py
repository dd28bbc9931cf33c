"""
Error taxonomy shared by every service.

Each error carries the HTTP status it maps to, so routers can let them
propagate and `register_exception_handlers()` turns them into JSON
responses of the same `{"detail": ...}` shape FastAPI uses for HTTPException.
"""
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class StorefrontError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(StorefrontError):
    """Client-correctable input problem."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(StorefrontError):
    """Missing order or payment session."""
    status_code = status.HTTP_404_NOT_FOUND


class SignatureError(StorefrontError):
    """Webhook payload failed signature verification."""
    status_code = status.HTTP_400_BAD_REQUEST


class PaymentGatewayError(StorefrontError):
    """The payment processor was unreachable, timed out or rejected the call."""
    status_code = status.HTTP_502_BAD_GATEWAY


class PersistenceError(StorefrontError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class DuplicateOrderError(PersistenceError):
    """An order already exists for the payment session."""
    status_code = status.HTTP_409_CONFLICT


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    if isinstance(exc, SignatureError):
        # Security-relevant: somebody posted to the webhook without a valid signature
        logger.warning("webhook_signature_rejected", path=request.url.path, reason=exc.message)
    elif exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message, error_type=type(exc).__name__)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(
        status_code=InvalidInput.status_code,
        content={"detail": "; ".join(messages) or "Invalid request"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
