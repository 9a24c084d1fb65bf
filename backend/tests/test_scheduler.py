from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from backend.app.core.config import ReminderPolicy
from backend.app.core.errors import InsufficientHistoryError, NotFoundError, PersistenceError
from backend.app.db.store import SqlReminderStore
from backend.app.models.schemas import OutcomeStatus
from backend.app.services.container import build_services

from conftest import FakeGateway, add_customer_with_orders, day


class FlakyStore(SqlReminderStore):
    """Store whose reads can be made to fail on demand."""

    def __init__(self, db_url: str, clock=None) -> None:
        super().__init__(db_url, clock=clock)
        self.fail_listing = False
        self.fail_orders_for: set[int] = set()

    def list_customers(self):
        if self.fail_listing:
            raise PersistenceError("list_customers failed", operation="list_customers")
        return super().list_customers()

    def list_orders(self, customer_id: int):
        if customer_id in self.fail_orders_for:
            raise PersistenceError("list_orders failed", operation="list_orders", customer_id=customer_id)
        return super().list_orders(customer_id)


def _outcome(report, customer_id: int):
    return next(o for o in report.outcomes if o.customer_id == customer_id)


def test_due_customer_is_notified_once_per_cycle(services, gateway) -> None:
    ana = add_customer_with_orders(services.store, "Ana", "5511987654321", [0, 7, 14])

    first = services.scheduler.sweep()
    second = services.scheduler.sweep()

    assert first.status == "completed"
    assert _outcome(first, ana.id).status == OutcomeStatus.NOTIFIED
    assert _outcome(first, ana.id).interval_days == 7
    assert _outcome(second, ana.id).status == OutcomeStatus.SKIPPED_ALREADY_NOTIFIED
    assert len(gateway.sent) == 1
    assert len(services.store.list_notifications(ana.id)) == 1


def test_sweep_uses_policy_timezone_for_today(services) -> None:
    # 2024-01-21 12:00 UTC is still 2024-01-21 in Sao Paulo.
    assert services.scheduler.today() == day(20)


def test_customer_not_yet_due_is_skipped(services, gateway) -> None:
    bia = add_customer_with_orders(services.store, "Bia", "5511900000002", [0, 10, 18])

    report = services.scheduler.sweep()

    outcome = _outcome(report, bia.id)
    assert outcome.status == OutcomeStatus.SKIPPED_NOT_DUE
    assert outcome.reason == "not_due"
    assert outcome.days_until_next == 7
    assert gateway.sent == []
    assert report.nothing_due is True


def test_customer_with_single_order_is_never_due(services, gateway) -> None:
    caio = add_customer_with_orders(services.store, "Caio", "5511900000003", [0])

    report = services.scheduler.sweep()

    outcome = _outcome(report, caio.id)
    assert outcome.status == OutcomeStatus.SKIPPED_NOT_DUE
    assert outcome.reason == "insufficient_history"
    assert gateway.attempts == []


def test_failure_for_one_customer_does_not_stop_the_batch(store, clock) -> None:
    gateway = FakeGateway(failing={"5511900000001"})
    services = build_services(store=store, gateway=gateway, policy=ReminderPolicy(), clock=clock)
    broken = add_customer_with_orders(store, "Duda", "5511900000001", [0, 7, 14])
    healthy = add_customer_with_orders(store, "Eva", "5511900000002", [0, 7, 14])

    report = services.scheduler.sweep()

    failed = _outcome(report, broken.id)
    assert failed.status == OutcomeStatus.FAILED
    assert failed.error_kind == "dispatch_failure"
    assert failed.reason == "unreachable"
    assert failed.attempts == 1
    assert _outcome(report, healthy.id).status == OutcomeStatus.NOTIFIED
    assert store.list_notifications(broken.id) == []
    assert report.all_failed is False

    # The failed customer is retried on the next sweep.
    gateway.failing.clear()
    retry = services.scheduler.sweep()
    assert _outcome(retry, broken.id).status == OutcomeStatus.NOTIFIED


def test_every_attempted_customer_failing_is_reported(store, clock) -> None:
    gateway = FakeGateway(failing={"5511900000001"})
    services = build_services(store=store, gateway=gateway, policy=ReminderPolicy(), clock=clock)
    add_customer_with_orders(store, "Duda", "5511900000001", [0, 7, 14])

    report = services.scheduler.sweep()

    assert report.status == "completed"
    assert report.all_failed is True
    assert report.summary()["counts"]["failed"] == 1


def test_dispatch_retries_are_opt_in(store, clock) -> None:
    gateway = FakeGateway(failing={"5511900000001"}, fail_times=1)
    policy = ReminderPolicy(dispatch_retries=2)
    services = build_services(store=store, gateway=gateway, policy=policy, clock=clock)
    customer = add_customer_with_orders(store, "Duda", "5511900000001", [0, 7, 14])

    report = services.scheduler.sweep()

    outcome = _outcome(report, customer.id)
    assert outcome.status == OutcomeStatus.NOTIFIED
    assert outcome.attempts == 2
    assert gateway.attempts.count("5511900000001") == 2


def test_exhausted_retries_report_attempt_count(store, clock) -> None:
    gateway = FakeGateway(failing={"5511900000001"})
    services = build_services(
        store=store, gateway=gateway, policy=ReminderPolicy(dispatch_retries=1), clock=clock
    )
    customer = add_customer_with_orders(store, "Duda", "5511900000001", [0, 7, 14])

    outcome = _outcome(services.scheduler.sweep(), customer.id)

    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.attempts == 2


def test_listing_failure_aborts_the_sweep(tmp_path, gateway, clock) -> None:
    store = FlakyStore(f"sqlite:///{tmp_path / 'flaky.db'}", clock=clock).init()
    services = build_services(store=store, gateway=gateway, policy=ReminderPolicy(), clock=clock)
    add_customer_with_orders(store, "Ana", "5511987654321", [0, 7, 14])
    store.fail_listing = True

    report = services.scheduler.sweep()

    assert report.status == "aborted"
    assert report.outcomes == []
    assert report.error["kind"] == "persistence_error"
    assert report.all_failed is True
    assert gateway.attempts == []
    store.dispose()


def test_storage_error_for_one_customer_is_isolated(tmp_path, gateway, clock) -> None:
    store = FlakyStore(f"sqlite:///{tmp_path / 'flaky.db'}", clock=clock).init()
    services = build_services(store=store, gateway=gateway, policy=ReminderPolicy(), clock=clock)
    broken = add_customer_with_orders(store, "Ana", "5511987654321", [0, 7, 14])
    healthy = add_customer_with_orders(store, "Bia", "5511900000002", [0, 7, 14])
    store.fail_orders_for.add(broken.id)

    report = services.scheduler.sweep()

    assert report.status == "completed"
    assert _outcome(report, broken.id).status == OutcomeStatus.FAILED
    assert _outcome(report, broken.id).error_kind == "persistence_error"
    assert _outcome(report, healthy.id).status == OutcomeStatus.NOTIFIED
    store.dispose()


def test_concurrent_sweeps_send_a_single_reminder(services, gateway) -> None:
    customers = [
        add_customer_with_orders(services.store, f"Cliente {n}", f"55119000000{n:02d}", [0, 7, 14])
        for n in range(6)
    ]
    barrier = threading.Barrier(3)
    reports = []

    def run() -> None:
        barrier.wait()
        reports.append(services.scheduler.sweep())

    threads = [threading.Thread(target=run) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(reports) == 3
    assert len(gateway.sent) == len(customers)
    for customer in customers:
        assert len(services.store.list_notifications(customer.id)) == 1
        statuses = [_outcome(report, customer.id).status for report in reports]
        assert statuses.count(OutcomeStatus.NOTIFIED) == 1


def test_cancelled_sweep_skips_remaining_customers(services, gateway) -> None:
    add_customer_with_orders(services.store, "Ana", "5511987654321", [0, 7, 14])
    cancel = threading.Event()
    cancel.set()

    report = services.scheduler.sweep(cancel_event=cancel)

    assert report.status == "cancelled"
    assert report.outcomes == []
    assert gateway.attempts == []


def test_new_order_starts_a_new_cycle(services, gateway, clock) -> None:
    ana = add_customer_with_orders(services.store, "Ana", "5511987654321", [0, 7, 14])
    assert _outcome(services.scheduler.sweep(), ana.id).status == OutcomeStatus.NOTIFIED

    clock.now = datetime(2024, 1, 22, 12, tzinfo=timezone.utc)
    services.store.add_order(ana.id, day(21))
    clock.now = datetime(2024, 1, 28, 12, tzinfo=timezone.utc)

    report = services.scheduler.sweep()

    assert _outcome(report, ana.id).status == OutcomeStatus.NOTIFIED
    assert len(services.store.list_notifications(ana.id)) == 2


def test_order_placed_the_day_of_the_reminder_starts_a_new_cycle(services, gateway, clock) -> None:
    ana = add_customer_with_orders(services.store, "Ana", "5511987654321", [0, 7, 14])
    assert _outcome(services.scheduler.sweep(), ana.id).status == OutcomeStatus.NOTIFIED

    # Customer answers the 09:00 reminder and the order is recorded at 11:00 local.
    clock.now = datetime(2024, 1, 21, 14, tzinfo=timezone.utc)
    services.store.add_order(ana.id, day(20))
    clock.now = datetime(2024, 1, 27, 12, tzinfo=timezone.utc)

    report = services.scheduler.sweep()

    assert _outcome(report, ana.id).status == OutcomeStatus.NOTIFIED
    assert _outcome(report, ana.id).interval_days == 7
    assert len(gateway.sent) == 2


def test_evening_reminder_before_prebooked_order_starts_a_new_cycle(services, gateway, clock) -> None:
    # Orders for days 0..20 are all entered on 2024-01-20; day 20 is booked ahead.
    clock.now = datetime(2024, 1, 20, 12, tzinfo=timezone.utc)
    ana = add_customer_with_orders(services.store, "Ana", "5511987654321", [0, 7, 14, 20])

    # 22:30 local on day 19, before the day-20 order's date begins in Sao Paulo.
    clock.now = datetime(2024, 1, 21, 1, 30, tzinfo=timezone.utc)
    services.scheduler.notify_now(ana.id)

    clock.now = datetime(2024, 1, 27, 12, tzinfo=timezone.utc)
    report = services.scheduler.sweep()

    assert _outcome(report, ana.id).status == OutcomeStatus.NOTIFIED
    assert len(services.store.list_notifications(ana.id)) == 2


def test_policy_change_applies_to_next_sweep(services, gateway) -> None:
    # Gaps 3 and 15: simple average 9, weighted 11.
    ana = add_customer_with_orders(services.store, "Ana", "5511987654321", [0, 3, 18])
    services.scheduler.apply_policy(ReminderPolicy(averaging_policy="weighted"))

    outcome = _outcome(services.scheduler.sweep(today=day(26)), ana.id)

    assert outcome.interval_days == 11
    assert outcome.status == OutcomeStatus.SKIPPED_NOT_DUE


def test_notify_now_bypasses_due_and_ledger_checks(services, gateway) -> None:
    ana = add_customer_with_orders(services.store, "Ana", "5511987654321", [0, 7, 14])
    services.scheduler.sweep()

    notification = services.scheduler.notify_now(ana.id)

    assert notification.customer_id == ana.id
    assert len(gateway.sent) == 2
    assert len(services.store.list_notifications(ana.id)) == 2


def test_notify_now_requires_history(services, gateway) -> None:
    caio = add_customer_with_orders(services.store, "Caio", "5511900000003", [0])

    with pytest.raises(InsufficientHistoryError):
        services.scheduler.notify_now(caio.id)

    assert gateway.attempts == []


def test_notify_now_unknown_customer(services) -> None:
    with pytest.raises(NotFoundError):
        services.scheduler.notify_now(9999)
