from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from hidasushi.models import OrderStatus, OrderType, PaymentMethod, PaymentStatus
from hidasushi.orders.errors import (
    HistoryConsistencyError,
    InvalidTransitionError,
    NoOpTransitionError,
    PaymentNotSettledError,
)
from hidasushi.orders.history import replay_status, verify_history
from hidasushi.orders.lifecycle import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    TransitionRecord,
    allowed_next_statuses,
    attempt_transition,
    seed_record,
)


def order(status=OrderStatus.RECEIVED, order_type=OrderType.DELIVERY,
          payment_status=PaymentStatus.PENDING, payment_method=PaymentMethod.STRIPE):
    return SimpleNamespace(
        id=1,
        order_number="#A100",
        status=status,
        order_type=order_type,
        payment_status=payment_status,
        payment_method=payment_method,
    )


def test_every_status_has_a_row_for_both_order_types():
    for status in OrderStatus:
        for order_type in OrderType:
            assert (status, order_type) in ALLOWED_TRANSITIONS


def test_terminal_statuses_have_no_exits():
    for status in TERMINAL_STATUSES:
        for order_type in OrderType:
            assert allowed_next_statuses(status, order_type) == frozenset()


def test_kitchen_flow_is_linear():
    assert allowed_next_statuses(OrderStatus.RECEIVED, OrderType.PICKUP) == {
        OrderStatus.ACCEPTED, OrderStatus.CANCELLED,
    }
    assert allowed_next_statuses(OrderStatus.IN_PREPARATION, OrderType.DELIVERY) == {
        OrderStatus.READY, OrderStatus.CANCELLED,
    }


def test_ready_branches_by_fulfillment_type():
    assert OrderStatus.OUT_FOR_DELIVERY in allowed_next_statuses(OrderStatus.READY, OrderType.DELIVERY)
    assert OrderStatus.READY_FOR_PICKUP not in allowed_next_statuses(OrderStatus.READY, OrderType.DELIVERY)
    assert OrderStatus.READY_FOR_PICKUP in allowed_next_statuses(OrderStatus.READY, OrderType.PICKUP)
    assert OrderStatus.COMPLETED not in allowed_next_statuses(OrderStatus.READY, OrderType.PICKUP)


def test_valid_transition_builds_record():
    now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
    record = attempt_transition(order(), OrderStatus.ACCEPTED, actor_id=3, note="ok", now=now)

    assert record == TransitionRecord(
        order_id=1,
        order_number="#A100",
        previous_status=OrderStatus.RECEIVED,
        new_status=OrderStatus.ACCEPTED,
        actor_id=3,
        note="ok",
        created_at=now,
    )
    assert not record.is_creation


def test_record_changes_stamp_lifecycle_columns():
    record = attempt_transition(order(), OrderStatus.ACCEPTED, actor_id=3)
    changes = record.order_changes()
    assert changes["status"] == OrderStatus.ACCEPTED
    assert changes["accepted_at"] == record.created_at
    assert changes["accepted_by"] == 3

    record = attempt_transition(order(status=OrderStatus.IN_PREPARATION), OrderStatus.READY)
    assert record.order_changes()["preparation_completed_at"] == record.created_at


def test_skipping_a_step_is_rejected():
    with pytest.raises(InvalidTransitionError) as exc_info:
        attempt_transition(order(status=OrderStatus.ACCEPTED), OrderStatus.READY)
    assert exc_info.value.current_status == OrderStatus.ACCEPTED
    assert exc_info.value.requested_status == OrderStatus.READY


def test_moving_backwards_is_rejected():
    with pytest.raises(InvalidTransitionError):
        attempt_transition(order(status=OrderStatus.READY), OrderStatus.IN_PREPARATION)


def test_same_status_is_a_noop():
    with pytest.raises(NoOpTransitionError):
        attempt_transition(order(status=OrderStatus.ACCEPTED), OrderStatus.ACCEPTED)


def test_noop_wins_over_terminal_check():
    with pytest.raises(NoOpTransitionError):
        attempt_transition(order(status=OrderStatus.CANCELLED), OrderStatus.CANCELLED)


@pytest.mark.parametrize("terminal", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
def test_terminal_orders_cannot_change(terminal):
    with pytest.raises(InvalidTransitionError):
        attempt_transition(order(status=terminal), OrderStatus.ACCEPTED)


def test_pickup_order_cannot_go_out_for_delivery():
    with pytest.raises(InvalidTransitionError, match="not available for pickup"):
        attempt_transition(order(status=OrderStatus.READY, order_type=OrderType.PICKUP),
                           OrderStatus.OUT_FOR_DELIVERY)


def test_delivery_order_cannot_be_ready_for_pickup():
    with pytest.raises(InvalidTransitionError):
        attempt_transition(order(status=OrderStatus.READY), OrderStatus.READY_FOR_PICKUP)


def test_ready_cannot_complete_directly():
    with pytest.raises(InvalidTransitionError):
        attempt_transition(order(status=OrderStatus.READY, payment_status=PaymentStatus.PAID),
                           OrderStatus.COMPLETED)


def test_completion_requires_payment():
    unpaid = order(status=OrderStatus.OUT_FOR_DELIVERY)
    with pytest.raises(PaymentNotSettledError):
        attempt_transition(unpaid, OrderStatus.COMPLETED)

    unpaid.payment_status = PaymentStatus.PAID
    record = attempt_transition(unpaid, OrderStatus.COMPLETED)
    assert record.new_status == OrderStatus.COMPLETED


def test_cash_on_delivery_completes_while_pending():
    cash = order(status=OrderStatus.READY_FOR_PICKUP, order_type=OrderType.PICKUP,
                 payment_method=PaymentMethod.CASH_ON_DELIVERY)
    record = attempt_transition(cash, OrderStatus.COMPLETED)
    assert record.order_changes()["completed_at"] == record.created_at


def test_failed_payment_blocks_completion():
    failed = order(status=OrderStatus.OUT_FOR_DELIVERY, payment_status=PaymentStatus.FAILED)
    with pytest.raises(PaymentNotSettledError):
        attempt_transition(failed, OrderStatus.COMPLETED)


def test_cancel_is_allowed_from_any_open_status():
    for status in OrderStatus:
        if status in TERMINAL_STATUSES:
            continue
        order_type = OrderType.PICKUP if status == OrderStatus.READY_FOR_PICKUP else OrderType.DELIVERY
        record = attempt_transition(order(status=status, order_type=order_type), OrderStatus.CANCELLED)
        assert record.order_changes()["cancelled_at"] == record.created_at


def test_seed_record_starts_the_ledger():
    record = seed_record(order())
    assert record.is_creation
    assert record.previous_status is None
    assert record.new_status == OrderStatus.RECEIVED


def test_replay_follows_the_ledger():
    o = order()
    records = [seed_record(o)]
    for status in (OrderStatus.ACCEPTED, OrderStatus.IN_PREPARATION, OrderStatus.READY):
        record = attempt_transition(o, status)
        records.append(record)
        o.status = record.new_status

    assert replay_status(records) == OrderStatus.READY
    verify_history(o, records)


def test_replay_of_empty_ledger_is_none():
    assert replay_status([]) is None


def test_verify_history_detects_divergence():
    o = order()
    records = [seed_record(o)]
    o.status = OrderStatus.ACCEPTED
    with pytest.raises(HistoryConsistencyError):
        verify_history(o, records)


def test_verify_history_detects_broken_chain():
    o = order(status=OrderStatus.IN_PREPARATION)
    records = [
        seed_record(o),
        TransitionRecord(1, "#A100", OrderStatus.ACCEPTED, OrderStatus.IN_PREPARATION),
    ]
    with pytest.raises(HistoryConsistencyError, match="breaks"):
        verify_history(o, records)
