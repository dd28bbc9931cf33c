from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from shared.exceptions import register_exception_handlers
from shared.security import limiter
from shared.observability import setup_observability
from .router import router, public_router

checkout_app = FastAPI(
    title="Checkout Service",
    version="2.0.0"
)

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(checkout_app, "checkout_service")
register_exception_handlers(checkout_app)

# --- SECURITY SETUP ---
checkout_app.state.limiter = limiter
checkout_app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# The payment gateway is attached at startup by the root app (main.py)
checkout_app.state.gateway = None

checkout_app.include_router(public_router)
checkout_app.include_router(router)
