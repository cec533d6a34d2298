import json
import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Load .env.test for local overrides before settings are first cached
env_test_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

from libs.common.config import get_settings  # noqa: E402
from libs.db.base import Base  # noqa: E402

# Import all models so metadata includes every storefront table
from services.storefront_service import models as _storefront_models  # noqa: F401,E402
from services.storefront_service.nowpayments_client import NowPaymentsClient  # noqa: E402
from services.storefront_service.services.notifier import NotificationError  # noqa: E402

# Clear cached settings to reload with new env vars
get_settings.cache_clear()
settings = get_settings()

IPN_SECRET = "test-ipn-secret"


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    File-backed SQLite engine, one database per test.

    A file (not :memory:) so that separate sessions get separate connections
    and concurrent writers really contend for the database lock.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storefront-test.db'}", future=True
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a database session on the per-test database.
    """
    async with session_factory() as session:
        yield session


class RecordingNotifier:
    """Messaging sink that keeps every message instead of sending it."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.admin_messages: list[str] = []
        self.fail = False

    async def notify(self, external_id: str, text: str) -> None:
        if self.fail:
            raise NotificationError("transport unavailable")
        self.sent.append((external_id, text))

    async def notify_admins(self, text: str) -> None:
        if self.fail:
            raise NotificationError("transport unavailable")
        self.admin_messages.append(text)

    def messages_for(self, external_id: str) -> list[str]:
        return [text for chat_id, text in self.sent if chat_id == external_id]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


class FakeNowPayments:
    """In-process stand-in for the NOWPayments HTTP API (httpx mock handler)."""

    def __init__(self):
        self.invoices: dict[str, dict] = {}
        self.payment_statuses: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        self.fail_invoices = False
        self._next_id = 4_000_000

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/invoice"):
            if self.fail_invoices:
                return httpx.Response(500, json={"message": "Internal error"})
            body = json.loads(request.content)
            self._next_id += 1
            invoice_id = str(self._next_id)
            self.invoices[invoice_id] = body
            return httpx.Response(
                200,
                json={
                    "id": invoice_id,
                    "order_id": body.get("order_id"),
                    "price_amount": str(body["price_amount"]),
                    "price_currency": body["price_currency"],
                    "invoice_url": f"https://nowpayments.io/payment/?iid={invoice_id}",
                },
            )

        if request.method == "GET" and "/payment/" in path:
            payment_id = path.rsplit("/", 1)[-1]
            if payment_id not in self.payment_statuses:
                return httpx.Response(404, json={"message": "Payment not found"})
            return httpx.Response(
                200,
                json={
                    "payment_id": int(payment_id),
                    "payment_status": self.payment_statuses[payment_id],
                    "pay_currency": "usdttrc20",
                },
            )

        return httpx.Response(404, json={"message": f"Unknown endpoint {path}"})

    def last_invoice_id(self) -> str:
        return list(self.invoices)[-1]


@pytest.fixture
def fake_nowpayments() -> FakeNowPayments:
    return FakeNowPayments()


@pytest.fixture
def provider(fake_nowpayments) -> NowPaymentsClient:
    return NowPaymentsClient(
        api_key="test-api-key",
        base_url="https://api.nowpayments.test/v1",
        ipn_secret=IPN_SECRET,
        transport=httpx.MockTransport(fake_nowpayments),
    )


@pytest_asyncio.fixture
async def client(
    session_factory, notifier, provider
) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient with the app and overridden DB, sink and provider.
    """
    from libs.db.session import get_async_db
    from services.storefront_service.app.main import app
    from services.storefront_service.dependencies import (
        get_notifier,
        get_payment_provider,
    )

    async def _override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _override_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_provider] = lambda: provider

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def internal_headers() -> dict:
    return {"X-Internal-Key": settings.INTERNAL_API_KEY}


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Admin-Key": settings.ADMIN_API_KEY, "X-Admin-Name": "ops-anna"}
