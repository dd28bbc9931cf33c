from fastapi import FastAPI

from shared.exceptions import register_exception_handlers
from shared.observability import setup_observability
from .router import router, public_router
from .models import Order # Import to register with Base

order_app = FastAPI(title="Order Service", version="2.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(order_app, "order_service")
register_exception_handlers(order_app)

order_app.include_router(public_router)
order_app.include_router(router)
