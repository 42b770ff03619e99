"""
Pytest configuration and shared fixtures for the Print Order Service tests.

Provides an in-memory SQLite order store, pipeline services wired to local
collaborators (simulated gateway, recording mail dispatcher, renderer writing
to tmp_path), and an httpx client for the FastAPI app.
"""
import asyncio
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "development")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import db_models  # noqa: F401
from config import settings
from database import Base
from domain.errors import UnavailableError
from services.checkout_service import CheckoutService
from services.invoice_renderer import HtmlInvoiceRenderer
from services.invoice_service import InvoiceService
from services.message_dispatcher import DispatchResult
from services.order_store import OrderDraft, OrderStore
from services.payment_gateway import SimulatedGateway
from services.payment_orchestrator import PaymentOrchestrator

# ── Test Configuration ───────────────────────────────────────────────
# Set test-only values for settings that would normally come from .env
settings.jwt_secret = "test-jwt-secret-for-pytest-only"
settings.admin_api_key = "test-admin-key"
settings.razorpay_key_secret = ""
settings.payment_simulation_mode = True
settings.mail_simulation_mode = True
settings.allow_header_auth = True

CUSTOMER_ID = "cust-001"
ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture(scope="function")
async def session_factory():
    """
    In-memory SQLite database per test.

    Uses StaticPool so every session shares the single in-memory connection.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def store(session_factory) -> OrderStore:
    return OrderStore(session_factory)


# ── Collaborator Doubles ─────────────────────────────────────────────


class RecordingDispatcher:
    """Mail dispatcher that keeps every message it is asked to send."""

    def __init__(self, result: DispatchResult | None = None):
        self.result = result or DispatchResult(True, "sent (test)")
        self.messages = []

    async def send(self, message):
        self.messages.append(message)
        return self.result


class UnreachableGateway(SimulatedGateway):
    """Gateway whose order API is down."""

    async def create_order(self, **kwargs):
        raise UnavailableError("payment gateway", "HTTP 503")


class SlowRenderer:
    """Renderer that never finishes inside the render deadline."""

    async def render(self, data):
        await asyncio.sleep(10)


# ── Data Helpers ─────────────────────────────────────────────────────


def make_draft(**overrides) -> OrderDraft:
    """500 stickers at ₹3 → ₹1500 (150000 paise)."""
    fields = dict(
        customer_id=CUSTOMER_ID,
        customer_name="Asha Verma",
        customer_email="asha@example.com",
        product_type="sticker",
        quantity=500,
        unit_price_minor=300,
        delivery_address="12 Market Road, Delhi 110001",
        artifact_url="https://files.example.com/designs/logo.png",
        artifact_name="logo.png",
        specifications="matte finish",
    )
    fields.update(overrides)
    return OrderDraft(**fields)


@pytest.fixture
def draft() -> OrderDraft:
    return make_draft()


# ── Service Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
async def invoice_service(store, dispatcher, tmp_path):
    service = InvoiceService(store, HtmlInvoiceRenderer(storage_dir=str(tmp_path), public_base_url=""), dispatcher)
    yield service
    await service.wait_for_deliveries()


@pytest.fixture
def orchestrator() -> PaymentOrchestrator:
    return PaymentOrchestrator(SimulatedGateway(key_secret=""), optimistic_timeout=True)


@pytest.fixture
async def checkout(store, orchestrator, invoice_service):
    service = CheckoutService(store, orchestrator, invoice_service, payment_deadline=0.5, session_ttl=60)
    yield service
    await service.shutdown()


# ── HTTP Client ──────────────────────────────────────────────────────


@pytest_asyncio.fixture(scope="function")
async def client(store, orchestrator, invoice_service, checkout):
    """httpx client for the app with services bound to the test store."""
    import deps
    from main import app

    app.dependency_overrides[deps.get_order_store] = lambda: store
    app.dependency_overrides[deps.get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[deps.get_invoice_service] = lambda: invoice_service
    app.dependency_overrides[deps.get_checkout_service] = lambda: checkout

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
