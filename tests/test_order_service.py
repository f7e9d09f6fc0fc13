import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from hidasushi.models import (
    Order,
    OrderStatus,
    OrderStatusHistory,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)
from hidasushi.orders.errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NoOpTransitionError,
    OrderNotFoundError,
    PaymentNotSettledError,
)
from hidasushi.orders.history import replay_status
from hidasushi.orders.lifecycle import attempt_transition, seed_record
from hidasushi.orders.repository import OrderRepository
from hidasushi.orders.service import OrderService, calculate_order_totals, generate_order_number
from hidasushi.realtime.dispatcher import NotificationDispatcher
from hidasushi.schemas import OrderCreate

from conftest import RecordingTransport


async def history_count(session) -> int:
    return (await session.execute(select(func.count(OrderStatusHistory.id)))).scalar()


@pytest.fixture
def service(session, dispatcher):
    return OrderService(session, dispatcher)


@pytest.fixture
async def saved_order(service, order_factory):
    order = order_factory()
    await service.repository.add(order, seed_record)
    return order


# =============================================================================
# PRICING
# =============================================================================

def test_delivery_totals():
    totals = calculate_order_totals(
        [Decimal("25.00"), Decimal("8.50")],
        OrderType.DELIVERY,
        delivery_fee=Decimal("3.50"),
        tax_rate=Decimal("0.06"),
    )
    assert totals.subtotal == Decimal("33.50")
    assert totals.delivery_fee == Decimal("3.50")
    assert totals.tax_amount == Decimal("2.22")
    assert totals.total == Decimal("39.22")


def test_pickup_pays_no_delivery_fee():
    totals = calculate_order_totals(
        [Decimal("10.00")], OrderType.PICKUP, delivery_fee=Decimal("3.50"), tax_rate=Decimal("0.06")
    )
    assert totals.delivery_fee == Decimal("0.00")
    assert totals.tax_amount == Decimal("0.60")
    assert totals.total == Decimal("10.60")


def test_order_number_format():
    number = generate_order_number(datetime(2026, 10, 18, 12, 30, 5, tzinfo=timezone.utc))
    assert re.fullmatch(r"HS20261018123005\d{4}", number)


# =============================================================================
# CREATION
# =============================================================================

async def test_create_order_seeds_history_and_notifies(service, registry, transport):
    registry.join("kitchen", "admin")
    data = OrderCreate(
        order_type=OrderType.PICKUP,
        customer_name="Lucas Peeters",
        customer_email="lucas@example.com",
        delivery_address="ignored for pickup",
        items=[
            {"sushi_roll_id": 1, "name": "California Roll", "quantity": 2, "unit_price": "8.50"},
            {"custom_roll_id": 4, "name": "Custom Roll", "quantity": 1, "unit_price": "14.00"},
        ],
    )

    order = await service.create_order(data)

    assert order.id is not None
    assert order.status == OrderStatus.RECEIVED
    assert order.delivery_address is None
    assert order.subtotal == Decimal("31.00")
    assert order.total == Decimal("32.86")
    assert [item.price for item in order.items] == [Decimal("17.00"), Decimal("14.00")]
    assert order.estimated_ready_time is not None

    _, records, consistent = await service.get_status_history(order.order_number)
    assert consistent
    assert [(r.previous_status, r.new_status) for r in records] == [(None, OrderStatus.RECEIVED)]

    message = transport.messages_for("kitchen")[0]
    assert message["event"] == "order_created"
    assert message["order"]["order_number"] == order.order_number


# =============================================================================
# TRANSITIONS
# =============================================================================

async def test_a100_delivery_scenario(service, saved_order, registry, transport):
    registry.join("admin-1", "admin")
    registry.join("tracker", "order:#A100")
    registry.join("customer", "customer:7")

    order = saved_order

    await service.transition_order(order, OrderStatus.ACCEPTED, actor_id=3)
    _, records, _ = await service.get_status_history("#A100")
    assert [r.new_status for r in records] == [OrderStatus.RECEIVED, OrderStatus.ACCEPTED]
    assert order.accepted_by == 3
    assert order.accepted_at is not None

    with pytest.raises(InvalidTransitionError):
        await service.transition_order(order, OrderStatus.READY)

    await service.transition_order(order, OrderStatus.IN_PREPARATION)
    await service.transition_order(order, OrderStatus.READY)
    await service.transition_order(order, OrderStatus.OUT_FOR_DELIVERY)

    with pytest.raises(PaymentNotSettledError):
        await service.transition_order(order, OrderStatus.COMPLETED)
    assert order.status == OrderStatus.OUT_FOR_DELIVERY

    await service.update_payment_status(order, PaymentStatus.PAID, transaction_id="pi_test")
    transport.sent.clear()

    await service.transition_order(order, OrderStatus.COMPLETED)

    assert order.status == OrderStatus.COMPLETED
    assert order.completed_at is not None
    for connection_id in ("admin-1", "tracker", "customer"):
        message = transport.messages_for(connection_id)[0]
        assert message["event"] == "order_status_updated"
        assert message["order"]["status"] == "completed"

    _, records, consistent = await service.get_status_history("#A100")
    assert consistent
    assert replay_status(records) == OrderStatus.COMPLETED
    assert [r.new_status for r in records] == [
        OrderStatus.RECEIVED,
        OrderStatus.ACCEPTED,
        OrderStatus.IN_PREPARATION,
        OrderStatus.READY,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.COMPLETED,
    ]


async def test_rejected_transition_writes_nothing(service, saved_order, session, transport):
    before = await history_count(session)

    with pytest.raises(InvalidTransitionError):
        await service.transition_order(saved_order, OrderStatus.READY)

    assert await history_count(session) == before
    assert transport.sent == []
    reloaded = await service.get_order(saved_order.id)
    assert reloaded.status == OrderStatus.RECEIVED


async def test_noop_writes_nothing_and_sends_nothing(service, saved_order, session, registry, transport):
    registry.join("admin-1", "admin")
    await service.transition_order(saved_order, OrderStatus.ACCEPTED)
    transport.sent.clear()
    before = await history_count(session)

    with pytest.raises(NoOpTransitionError):
        await service.transition_order(saved_order, OrderStatus.ACCEPTED)

    assert await history_count(session) == before
    assert transport.sent == []


async def test_cash_on_delivery_pickup_completes_unpaid(service, order_factory):
    order = order_factory(
        order_number="HS-CASH-1",
        order_type=OrderType.PICKUP,
        payment_method=PaymentMethod.CASH_ON_DELIVERY,
    )
    await service.repository.add(order, seed_record)

    for status in (
        OrderStatus.ACCEPTED,
        OrderStatus.IN_PREPARATION,
        OrderStatus.READY,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.COMPLETED,
    ):
        await service.transition_order(order, status)

    assert order.status == OrderStatus.COMPLETED
    assert order.payment_status == PaymentStatus.PENDING


async def test_cancelled_order_is_final(service, saved_order):
    await service.transition_order(saved_order, OrderStatus.CANCELLED, note="customer called")
    assert saved_order.cancelled_at is not None

    with pytest.raises(InvalidTransitionError):
        await service.transition_order(saved_order, OrderStatus.ACCEPTED)

    _, records, _ = await service.get_status_history("#A100")
    assert records[-1].note == "customer called"


async def test_notification_failure_keeps_the_commit(session, order_factory, registry):
    dispatcher = NotificationDispatcher(registry, RecordingTransport(failing={"gone"}))
    registry.join("gone", "admin")
    service = OrderService(session, dispatcher)
    order = order_factory()
    await service.repository.add(order, seed_record)

    await service.transition_order(order, OrderStatus.ACCEPTED)

    reloaded = await service.get_order(order.id)
    assert reloaded.status == OrderStatus.ACCEPTED


# =============================================================================
# QUERIES
# =============================================================================

async def test_unknown_orders_raise_not_found(service):
    with pytest.raises(OrderNotFoundError):
        await service.get_order(999)
    with pytest.raises(OrderNotFoundError):
        await service.get_order_by_number("HS-NOPE")
    with pytest.raises(OrderNotFoundError):
        await service.get_status_history("HS-NOPE")


async def test_list_orders_filters_by_status(service, order_factory):
    first = order_factory(order_number="HS-1")
    second = order_factory(order_number="HS-2")
    await service.repository.add(first, seed_record)
    await service.repository.add(second, seed_record)
    await service.transition_order(second, OrderStatus.ACCEPTED)

    total, orders = await service.list_orders()
    assert total == 2

    total, orders = await service.list_orders(status=OrderStatus.RECEIVED)
    assert total == 1
    assert orders[0].order_number == "HS-1"


async def test_history_mismatch_is_reported(service, saved_order, session):
    # Simulate an out-of-band write that bypassed the ledger
    saved_order.status = OrderStatus.ACCEPTED
    await session.commit()

    _, _, consistent = await service.get_status_history("#A100")
    assert not consistent


# =============================================================================
# CONCURRENCY
# =============================================================================

async def test_stale_writer_gets_concurrent_modification(session_maker, order_factory):
    async with session_maker() as setup:
        order = order_factory()
        await OrderRepository(setup).add(order, seed_record)
        order_id = order.id

    async with session_maker() as session_a, session_maker() as session_b:
        repo_a, repo_b = OrderRepository(session_a), OrderRepository(session_b)
        order_a = await repo_a.get(order_id)
        order_b = await repo_b.get(order_id)

        await repo_a.commit_transition(order_a, attempt_transition(order_a, OrderStatus.ACCEPTED))

        stale = attempt_transition(order_b, OrderStatus.CANCELLED)
        with pytest.raises(ConcurrentModificationError) as exc_info:
            await repo_b.commit_transition(order_b, stale)
        assert exc_info.value.expected_status == OrderStatus.RECEIVED

        # Re-read and retry against the fresh status
        fresh = await repo_b.get(order_id)
        assert fresh.status == OrderStatus.ACCEPTED
        await repo_b.commit_transition(fresh, attempt_transition(fresh, OrderStatus.CANCELLED))

    async with session_maker() as check:
        records = list(await OrderRepository(check).history.list_for_order("#A100"))
        assert [r.new_status for r in records] == [
            OrderStatus.RECEIVED,
            OrderStatus.ACCEPTED,
            OrderStatus.CANCELLED,
        ]



async def test_duplicate_transition_has_a_single_winner(session_maker, order_factory):
    async with session_maker() as setup:
        order = order_factory()
        await OrderRepository(setup).add(order, seed_record)
        order_id = order.id

    async with session_maker() as session_a, session_maker() as session_b:
        repo_a, repo_b = OrderRepository(session_a), OrderRepository(session_b)
        order_a = await repo_a.get(order_id)
        order_b = await repo_b.get(order_id)

        # Both admins validated the same step against the same snapshot
        record_a = attempt_transition(order_a, OrderStatus.ACCEPTED)
        record_b = attempt_transition(order_b, OrderStatus.ACCEPTED)

        await repo_a.commit_transition(order_a, record_a)
        with pytest.raises(ConcurrentModificationError):
            await repo_b.commit_transition(order_b, record_b)

    async with session_maker() as check:
        stored = (await check.execute(select(Order).where(Order.id == order_id))).scalar_one()
        assert stored.status == OrderStatus.ACCEPTED
        records = list(await OrderRepository(check).history.list_for_order("#A100"))
        assert len(records) == 2
