from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

from hidasushi.models import OrderStatus, OrderType, PaymentMethod, PaymentStatus
from hidasushi.orders.lifecycle import attempt_transition, seed_record
from hidasushi.realtime.dispatcher import (
    NotificationDispatcher,
    build_order_snapshot,
    target_groups,
)
from hidasushi.realtime.registry import SubscriptionRegistry

from conftest import RecordingTransport


def order(customer_id=7, status=OrderStatus.RECEIVED):
    now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
    return SimpleNamespace(
        id=1,
        order_number="#A100",
        status=status,
        order_type=OrderType.DELIVERY,
        customer_id=customer_id,
        payment_status=PaymentStatus.PENDING,
        payment_method=PaymentMethod.STRIPE,
        total=Decimal("30.21"),
        created_at=now,
        updated_at=now,
        estimated_ready_time=None,
        accepted_at=None,
        preparation_started_at=None,
        preparation_completed_at=None,
        completed_at=None,
        cancelled_at=None,
    )


def test_target_groups_include_customer_when_known():
    assert target_groups(order()) == ["admin", "order:#A100", "customer:7"]


def test_guest_orders_skip_customer_group():
    assert target_groups(order(customer_id=None)) == ["admin", "order:#A100"]


def test_snapshot_is_json_ready():
    snapshot = build_order_snapshot(order())
    assert snapshot["status"] == "received"
    assert snapshot["total"] == "30.21"
    assert snapshot["created_at"] == "2026-10-18T12:00:00+00:00"
    assert snapshot["completed_at"] is None


async def test_notify_reaches_every_target_group(dispatcher, registry, transport):
    registry.join("admin-1", "admin")
    registry.join("tracker", "order:#A100")
    registry.join("customer", "customer:7")
    registry.join("other", "customer:8")

    o = order()
    record = attempt_transition(o, OrderStatus.ACCEPTED)
    o.status = OrderStatus.ACCEPTED

    delivered = await dispatcher.notify(o, record)

    assert delivered == 3
    assert {cid for cid, _ in transport.sent} == {"admin-1", "tracker", "customer"}
    message = transport.messages_for("tracker")[0]
    assert message["event"] == "order_status_updated"
    assert message["order"]["status"] == "accepted"
    assert message["transition"]["previous_status"] == "received"
    assert message["transition"]["new_status"] == "accepted"


async def test_creation_is_announced_as_order_created(dispatcher, registry, transport):
    registry.join("admin-1", "admin")
    o = order()

    await dispatcher.notify(o, seed_record(o))

    assert transport.messages_for("admin-1")[0]["event"] == "order_created"


async def test_connection_in_several_groups_gets_one_copy(dispatcher, registry, transport):
    registry.join("c1", "admin")
    registry.join("c1", "order:#A100")
    registry.join("c1", "customer:7")

    o = order()
    delivered = await dispatcher.notify(o, seed_record(o))

    assert delivered == 1
    assert len(transport.messages_for("c1")) == 1


async def test_failed_push_does_not_block_others(registry):
    transport = RecordingTransport(failing={"broken"})
    dispatcher = NotificationDispatcher(registry, transport, push_timeout=0.2)
    registry.join("broken", "admin")
    registry.join("healthy", "admin")

    o = order()
    delivered = await dispatcher.notify(o, seed_record(o))

    assert delivered == 1
    assert len(transport.messages_for("healthy")) == 1


async def test_slow_push_times_out(registry):
    transport = RecordingTransport(slow={"slow"}, delay=1.0)
    dispatcher = NotificationDispatcher(registry, transport, push_timeout=0.05)
    registry.join("slow", "admin")
    registry.join("fast", "admin")

    o = order()
    delivered = await dispatcher.notify(o, seed_record(o))

    assert delivered == 1
    assert transport.messages_for("slow") == []


async def test_notify_never_raises(registry):
    class ExplodingRegistry(SubscriptionRegistry):
        def members_of(self, group_key):
            raise RuntimeError("registry down")

    dispatcher = NotificationDispatcher(ExplodingRegistry(), RecordingTransport())
    o = order()
    assert await dispatcher.notify(o, seed_record(o)) == 0


async def test_notify_without_subscribers(dispatcher):
    o = order()
    assert await dispatcher.notify(o, seed_record(o)) == 0


async def test_payment_update_event(dispatcher, registry, transport):
    registry.join("c1", "customer:7")
    o = order()
    o.payment_status = PaymentStatus.PAID

    await dispatcher.notify_payment_update(o)

    message = transport.messages_for("c1")[0]
    assert message["event"] == "payment_status_updated"
    assert message["order"]["payment_status"] == "paid"


async def test_send_to_group(dispatcher, registry, transport):
    registry.join("c1", "admin")
    registry.join("c2", "admin")

    assert await dispatcher.send_to_group("admin", {"event": "ping"}) == 2


async def test_disconnect_cleans_registry_and_transport(dispatcher, registry, transport):
    dispatcher.join("c1", "admin")
    dispatcher.join("c1", "order:#A100")

    await dispatcher.disconnect("c1")

    assert registry.members_of("admin") == frozenset()
    assert registry.members_of("order:#A100") == frozenset()
    assert transport.closed == ["c1"]

    o = order()
    assert await dispatcher.notify(o, seed_record(o)) == 0
