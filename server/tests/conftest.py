"""Test configuration and fixtures."""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PAYMENT_PROVIDER", "stub")

from datetime import date, timedelta  # noqa: E402
from typing import Optional  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from reservation_core import models  # noqa: E402,F401
from reservation_core.core import clock  # noqa: E402
from reservation_core.core.config import settings  # noqa: E402
from reservation_core.core.database import Base, get_db  # noqa: E402
from reservation_core.core.dependencies import get_gateway_registry, get_notifier  # noqa: E402
from reservation_core.gateways import GatewayRegistry  # noqa: E402
from reservation_core.gateways.stub_gateway import StubGateway  # noqa: E402
from reservation_core.models.booking import Booking  # noqa: E402
from reservation_core.models.inventory import ItemKind  # noqa: E402
from reservation_core.schemas.booking import CreateBookingRequest  # noqa: E402
from reservation_core.schemas.inventory import AddonSpec, RegisterItemRequest  # noqa: E402
from reservation_core.services.inventory_service import InventoryService  # noqa: E402
from reservation_core.services.payment_service import PaymentSessionService  # noqa: E402
from reservation_core.services.reconciliation_service import ReconciliationService  # noqa: E402
from reservation_core.services.reservation_service import ReservationCoordinator  # noqa: E402

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

STUB_WEBHOOK_SECRET = "test-webhook-secret"


class RecordingNotifier:
    """Notifier that remembers every confirmation it was asked to send."""

    def __init__(self, fail: bool = False):
        self.confirmed: list[Booking] = []
        self.fail = fail

    async def booking_confirmed(self, booking: Booking) -> None:
        self.confirmed.append(booking)
        if self.fail:
            raise RuntimeError("mail server down")


def future_window(start_in_days: int = 10, nights: int = 2) -> tuple[date, date]:
    start = clock.today() + timedelta(days=start_in_days)
    return start, start + timedelta(days=nights)


def bearer(user_id: str, roles: tuple[str, ...] = ()) -> dict[str, str]:
    token = jwt.encode({"sub": user_id, "roles": list(roles)}, settings.bearer_token_secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def stub_gateway():
    return StubGateway(webhook_secret=STUB_WEBHOOK_SECRET)


@pytest.fixture
def gateways(stub_gateway):
    return GatewayRegistry({"stub": stub_gateway}, default="stub")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)


@pytest.fixture
def make_item(test_session):
    """Register an inventory item; dated kinds default to a window starting tomorrow."""

    async def _make_item(
        kind: ItemKind = ItemKind.HOTEL,
        capacity_total: int = 5,
        unit_price: int = 1000000,
        currency: str = "LKR",
        max_quantity: int = 20,
        window_days: int = 60,
        addons: Optional[dict[str, AddonSpec]] = None,
        name: Optional[str] = None,
    ):
        dated = kind in (ItemKind.HOTEL, ItemKind.TOUR, ItemKind.GUIDE)
        start = clock.today() + timedelta(days=1)
        request = RegisterItemRequest(
            kind=kind,
            name=name or f"Test {kind.value}",
            capacity_total=capacity_total,
            window_start=start if dated else None,
            window_end=start + timedelta(days=window_days) if dated else None,
            unit_price=unit_price,
            currency=currency,
            max_quantity=max_quantity,
            addons=addons or {},
        )
        return await InventoryService(test_session).register_item(request)

    return _make_item


@pytest.fixture
def make_booking(test_session):
    """Create a pending booking through the coordinator."""

    async def _make_booking(item, quantity: int = 1, requester_id: str = "user-1", nights: int = 2, addons=()):
        window_start, window_end = (None, None)
        if item.window_start is not None:
            window_start, window_end = future_window(nights=nights)
        request = CreateBookingRequest(
            item_kind=item.kind,
            item_id=item.id,
            quantity=quantity,
            window_start=window_start,
            window_end=window_end,
            addons=list(addons),
        )
        return await ReservationCoordinator(test_session).create_booking(request, requester_id)

    return _make_booking


@pytest.fixture
def make_confirmed_booking(test_session, make_booking, gateways, stub_gateway, notifier):
    """Create a booking and settle it through the stub gateway."""

    async def _make_confirmed_booking(item, requester_id: str = "user-1", **kwargs):
        booking = await make_booking(item, requester_id=requester_id, **kwargs)
        _, session = await PaymentSessionService(test_session, gateways).open_session(booking.id, requester_id)
        stub_gateway.mark_succeeded(session.reference)
        return await ReconciliationService(test_session, gateways, notifier).confirm(booking.id, session.reference)

    return _make_confirmed_booking


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, gateways, notifier):
    """Create the application wired to the test database and stub gateway."""
    from reservation_core.main import create_app

    app = create_app()

    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_registry] = lambda: gateways
    app.dependency_overrides[get_notifier] = lambda: notifier

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth():
    """Build bearer headers: ``auth("user-1")`` or ``auth("ops", ("staff",))``."""
    return bearer


@pytest.fixture
def window():
    """Build a future booking window: ``window(start_in_days=10, nights=2)``."""
    return future_window
