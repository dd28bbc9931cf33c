from fastapi import FastAPI
from sqlalchemy import text
from shared.config.database import engine, Base

# IMPORTANT: import models so they register with Base
from services.order_service import models as order_models

from services.order_service.main import order_app
from services.orchestrator.main import checkout_app
from services.payment_service.gateway import build_gateway

app = FastAPI(title="ShopSmart Storefront")

@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text("CREATE SCHEMA IF NOT EXISTS order_schema"))

        # Create all tables
        await conn.run_sync(Base.metadata.create_all)

    # One gateway client for the life of the process, owned by the checkout app
    checkout_app.state.gateway = build_gateway()

@app.get("/")
async def root():
    return {
        "message": "ShopSmart API is running",
        "endpoints": {
            "checkout": "/api/checkout/",
            "webhook": "/api/checkout/webhook",
            "verifyPayment": "/api/checkout/verify/{session_id}",
            "orders": "/api/orders/?email=user@example.com",
            "orderBySession": "/api/orders/session/{session_id}",
            "order": "/api/orders/{order_id}",
        },
    }

app.mount("/api/orders", order_app)
app.mount("/api/checkout", checkout_app)
