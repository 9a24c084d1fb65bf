from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

from backend.app.models.schemas import Order
from backend.app.services.ledger_service import KeyedLocks, NotificationLedger, cycle_start

from conftest import add_customer_with_orders, day


def _order(order_day, created_at: datetime) -> Order:
    return Order(id=1, customer_id=1, order_date=order_day, quantity=1, created_at=created_at)


def test_record_is_append_only_and_tracks_latest(store) -> None:
    customer = add_customer_with_orders(store, "Ana", "5511987654321", [0, 7])
    ledger = NotificationLedger(store)

    assert ledger.last_notified_at(customer.id) is None

    first = datetime(2024, 1, 10, 12, tzinfo=timezone.utc)
    second = datetime(2024, 1, 12, 12, tzinfo=timezone.utc)
    ledger.record(customer.id, "first", first)
    ledger.record(customer.id, "second", second)

    assert ledger.last_notified_at(customer.id) == second
    assert [n.message for n in store.list_notifications(customer.id)] == ["second", "first"]


def test_cycle_starts_when_order_is_recorded() -> None:
    # Reminder at 09:00 local, customer answers and the order is recorded at 12:00 local.
    recorded = datetime(2024, 1, 21, 15, tzinfo=timezone.utc)

    assert cycle_start(_order(day(20), recorded), "America/Sao_Paulo") == recorded


def test_prebooked_order_cycle_starts_at_local_midnight() -> None:
    order = _order(day(20), datetime(2024, 1, 20, 12, tzinfo=timezone.utc))

    assert cycle_start(order, "America/Sao_Paulo") == datetime(2024, 1, 21, 3, tzinfo=timezone.utc)
    assert cycle_start(order, "UTC") == datetime(2024, 1, 21, 0, tzinfo=timezone.utc)


def test_notification_in_current_cycle_suppresses_repeat(store) -> None:
    customer = add_customer_with_orders(store, "Ana", "5511987654321", [0, 7, 14])
    ledger = NotificationLedger(store)
    ledger.record(customer.id, "lembrete", datetime(2024, 1, 21, 12, tzinfo=timezone.utc))

    assert ledger.already_notified(customer.id, datetime(2024, 1, 15, 3, tzinfo=timezone.utc)) is True
    # An order recorded after the reminder starts a new cycle.
    assert ledger.already_notified(customer.id, datetime(2024, 1, 21, 12, 5, tzinfo=timezone.utc)) is False


def test_reminder_that_led_to_the_order_is_not_counted(store) -> None:
    customer = add_customer_with_orders(store, "Ana", "5511987654321", [0, 7])
    ledger = NotificationLedger(store)
    ledger.record(customer.id, "lembrete", datetime(2024, 1, 21, 12, tzinfo=timezone.utc))

    same_day = _order(day(20), datetime(2024, 1, 21, 14, tzinfo=timezone.utc))

    assert ledger.already_notified(customer.id, cycle_start(same_day, "America/Sao_Paulo")) is False


def test_conditional_record_skips_second_writer(store) -> None:
    customer = add_customer_with_orders(store, "Ana", "5511987654321", [0, 7])
    ledger = NotificationLedger(store)
    sent_at = datetime(2024, 1, 14, 12, tzinfo=timezone.utc)
    since = datetime(2024, 1, 8, 3, tzinfo=timezone.utc)

    assert ledger.record(customer.id, "one", sent_at, since=since) is not None
    assert ledger.record(customer.id, "two", sent_at, since=since) is None
    assert len(store.list_notifications(customer.id)) == 1


def test_keyed_locks_serialise_and_evict() -> None:
    locks = KeyedLocks()
    inside = []
    overlaps = []

    def worker() -> None:
        with locks.hold(42):
            if inside:
                overlaps.append(True)
            inside.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == []
    assert len(locks) == 0
