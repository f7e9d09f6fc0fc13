import asyncio
import os
import tempfile
from decimal import Decimal
from typing import Any

# Settings are read at import time; point them at throwaway storage first
_TMP_DIR = tempfile.mkdtemp(prefix="hidasushi-tests-")
os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/app.db"
os.environ["DATA_DIRECTORY"] = _TMP_DIR
os.environ["EXCEL_EXPORT_ENABLED"] = "false"
os.environ["MOCK_PAYMENT_FAILURE_RATE"] = "0"

import pytest

from hidasushi.core.config import get_settings
from hidasushi.database import build_engine, build_session_maker, init_db
from hidasushi.models import Order, OrderItem, OrderStatus, OrderType, PaymentMethod, PaymentStatus
from hidasushi.realtime.base import BasePushTransport, ConnectionClosedError
from hidasushi.realtime.dispatcher import NotificationDispatcher
from hidasushi.realtime.registry import SubscriptionRegistry

get_settings.cache_clear()


class RecordingTransport(BasePushTransport):
    """Keeps every delivered message; optional per-connection failures."""

    def __init__(self, failing=(), slow=(), delay: float = 1.0):
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.closed: list[str] = []
        self.failing = set(failing)
        self.slow = set(slow)
        self.delay = delay

    @property
    def provider_name(self) -> str:
        return "recording"

    async def send(self, connection_id: str, message: dict[str, Any]) -> None:
        if connection_id in self.failing:
            raise ConnectionClosedError(connection_id)
        if connection_id in self.slow:
            await asyncio.sleep(self.delay)
        self.sent.append((connection_id, message))

    async def close(self, connection_id: str) -> None:
        self.closed.append(connection_id)

    def connection_count(self) -> int:
        return 0

    def messages_for(self, connection_id: str) -> list[dict[str, Any]]:
        return [message for cid, message in self.sent if cid == connection_id]


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def registry():
    return SubscriptionRegistry()


@pytest.fixture
def dispatcher(registry, transport):
    return NotificationDispatcher(registry, transport, push_timeout=0.2)


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


def make_order(
    order_number: str = "#A100",
    order_type: OrderType = OrderType.DELIVERY,
    customer_id=7,
    payment_method: PaymentMethod = PaymentMethod.STRIPE,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
) -> Order:
    """Unsaved order in status received with a single item."""
    return Order(
        order_number=order_number,
        customer_id=customer_id,
        customer_name="Yuki Tanaka",
        customer_email="yuki@example.com",
        order_type=order_type,
        delivery_address="Rue Neuve 1, 1000 Brussels" if order_type == OrderType.DELIVERY else None,
        location="Brussels",
        items=[
            OrderItem(
                sushi_roll_id=2,
                name="Dragon Roll",
                quantity=2,
                unit_price=Decimal("12.50"),
                price=Decimal("25.00"),
            )
        ],
        subtotal=Decimal("25.00"),
        delivery_fee=Decimal("3.50") if order_type == OrderType.DELIVERY else Decimal("0.00"),
        tax_amount=Decimal("1.71"),
        total=Decimal("30.21"),
        status=OrderStatus.RECEIVED,
        payment_method=payment_method,
        payment_status=payment_status,
    )


@pytest.fixture
def order_factory():
    return make_order
