import os

# Settings are read at import time, so the environment is fixed up first
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("ADMIN_EMAIL", "admin@shop.test")
os.environ.setdefault("PAYMENT_GATEWAY", "fake")
os.environ.setdefault("CLIENT_URL", "http://shop.test")

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from shared.config.database import Base, get_db
from shared.security import create_access_token, limiter
from services.order_service import models  # noqa: F401 registers tables
from services.order_service.main import order_app
from services.orchestrator.checkout import CheckoutOrchestrator
from services.orchestrator.main import checkout_app
from services.orchestrator.reconciliation import ReconciliationEngine
from services.payment_service.fake_adapter import FakeGateway

INTERNAL_API_KEY = os.environ["INTERNAL_API_KEY"]
ADMIN_EMAIL = os.environ["ADMIN_EMAIL"]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path, anyio_backend):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        poolclass=NullPool,
        # SQLite has no schemas; map order_schema onto the default one
        execution_options={"schema_translate_map": {"order_schema": None}},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway(webhook_secret="whsec_test")


@pytest.fixture
def orchestrator(gateway):
    return CheckoutOrchestrator(gateway, client_url="http://shop.test", currency="inr")


@pytest.fixture
def reconciler(gateway):
    return ReconciliationEngine(gateway)


@pytest.fixture
async def client(session_factory, gateway):
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    order_app.dependency_overrides[get_db] = override_get_db
    checkout_app.dependency_overrides[get_db] = override_get_db
    checkout_app.state.gateway = gateway
    limiter.enabled = False

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    order_app.dependency_overrides.clear()
    checkout_app.dependency_overrides.clear()
    checkout_app.state.gateway = None
    limiter.enabled = True


def auth_headers(email: str) -> dict:
    token = create_access_token({"sub": email})
    return {"Authorization": f"Bearer {token}"}


def mug_cart(email: str = "a@b.com") -> dict:
    return {"email": email, "items": [{"name": "Mug", "unit_price": 499, "quantity": 2}]}
