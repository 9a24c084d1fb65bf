r"""backend\app\services\scheduler_service.py

Reminder sweep and on-demand notification.

``ReminderScheduler.sweep`` evaluates every customer once: predict the
reorder interval, check whether today crosses the due threshold, consult the
ledger so a cycle is only notified once, and dispatch. Customers are
independent and are evaluated on a bounded thread pool; one customer's
failure is recorded in the report and never aborts the batch. Only a failure
to list customers aborts the sweep.

The scheduler holds no timer state. The daily trigger lives in
``services.trigger`` and simply calls :meth:`ReminderScheduler.sweep`.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from ..core.config import ReminderPolicy
from ..core.errors import (
    DispatchFailure,
    InsufficientHistoryError,
    NotFoundError,
    PersistenceError,
    ReminderError,
)
from ..core.observability import record_sweep
from ..db.store import ReminderStore
from ..models.schemas import (
    Customer,
    CustomerOutcome,
    DueStatus,
    Notification,
    Order,
    OutcomeStatus,
    PredictionResult,
    SweepReport,
)
from .dispatch_service import Dispatcher
from .due_service import detect_due
from .interval_service import estimate_interval
from .ledger_service import NotificationLedger, cycle_start

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReminderScheduler:
    """Run reminder sweeps and single-customer notifications."""

    def __init__(
        self,
        store: ReminderStore,
        ledger: NotificationLedger,
        dispatcher: Dispatcher,
        policy: ReminderPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.policy = policy or ReminderPolicy()
        self.clock = clock
        self.dispatcher.template = self.policy.message_template

    # ------------------------------------------------------------------
    def apply_policy(self, policy: ReminderPolicy) -> None:
        """Swap in a new policy; takes effect from the next evaluation."""
        self.policy = policy
        self.dispatcher.template = policy.message_template

    def today(self) -> date:
        """Return the current calendar date in the configured time zone."""
        return self.clock().astimezone(ZoneInfo(self.policy.timezone)).date()

    def evaluate(
        self, orders: List[Order], today: date
    ) -> Tuple[PredictionResult, DueStatus]:
        """Predict the interval and due status for one chronological order list."""

        prediction = estimate_interval(
            [order.order_date for order in orders], self.policy.averaging_policy
        )
        last_order_date = orders[-1].order_date if orders else None
        status = detect_due(
            prediction.interval_days,
            last_order_date,
            today,
            lead_time_days=self.policy.lead_time_days,
        )
        return prediction, status

    # ------------------------------------------------------------------
    def sweep(
        self,
        today: date | None = None,
        cancel_event: threading.Event | None = None,
    ) -> SweepReport:
        """Evaluate all customers and send reminders to those due."""

        started_at = self.clock()
        started_perf = time.perf_counter()
        today = today or self.today()

        try:
            customers = self.store.list_customers()
        except PersistenceError as exc:
            LOGGER.error("Sweep aborted: unable to list customers: %s", exc)
            report = SweepReport(
                status="aborted",
                started_at=started_at,
                finished_at=self.clock(),
                error=exc.to_dict(),
            )
            record_sweep(report, time.perf_counter() - started_perf)
            return report

        LOGGER.info(
            "Sweep started for %d customers on %s policy=%s lead_time=%d",
            len(customers),
            today,
            self.policy.averaging_policy,
            self.policy.lead_time_days,
        )

        outcomes: List[CustomerOutcome] = []
        workers = max(1, min(self.policy.max_concurrent_sends, len(customers) or 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reminder-sweep") as pool:
            futures = [
                pool.submit(self._process_customer, customer, today, cancel_event)
                for customer in customers
            ]
            for future in futures:
                outcome = future.result()
                if outcome is not None:
                    outcomes.append(outcome)

        cancelled = cancel_event is not None and cancel_event.is_set()
        report = SweepReport(
            status="cancelled" if cancelled else "completed",
            started_at=started_at,
            finished_at=self.clock(),
            outcomes=outcomes,
        )
        record_sweep(report, time.perf_counter() - started_perf)
        LOGGER.info("Sweep %s: %s", report.status, report.counts)
        return report

    def _process_customer(
        self,
        customer: Customer,
        today: date,
        cancel_event: threading.Event | None,
    ) -> Optional[CustomerOutcome]:
        if cancel_event is not None and cancel_event.is_set():
            return None

        prediction: PredictionResult | None = None
        status: DueStatus | None = None
        attempts = 0
        try:
            with self.ledger.cycle_guard(customer.id):
                orders = self.store.list_orders(customer.id)
                prediction, status = self.evaluate(orders, today)

                if not status.due:
                    return CustomerOutcome(
                        customer_id=customer.id,
                        status=OutcomeStatus.SKIPPED_NOT_DUE,
                        interval_days=prediction.interval_days,
                        days_until_next=status.days_until_next,
                        reason="insufficient_history" if prediction.interval_days is None else "not_due",
                    )

                since = cycle_start(orders[-1], self.policy.timezone)
                if self.ledger.already_notified(customer.id, since):
                    return CustomerOutcome(
                        customer_id=customer.id,
                        status=OutcomeStatus.SKIPPED_ALREADY_NOTIFIED,
                        interval_days=prediction.interval_days,
                        days_until_next=status.days_until_next,
                        reason="notified_since_last_order",
                    )

                notification, attempts = self._dispatch_with_retries(
                    customer, prediction, cycle_since=since
                )
        except ReminderError as exc:
            LOGGER.warning("Customer customer_id=%s failed during sweep: %s", customer.id, exc)
            return CustomerOutcome(
                customer_id=customer.id,
                status=OutcomeStatus.FAILED,
                interval_days=prediction.interval_days if prediction else None,
                days_until_next=status.days_until_next if status else None,
                reason=str(exc.context.get("reason") or exc.message),
                error_kind=exc.kind,
                attempts=int(exc.context.get("attempts", attempts)),
            )
        except Exception as exc:
            LOGGER.exception("Unexpected error evaluating customer_id=%s", customer.id)
            return CustomerOutcome(
                customer_id=customer.id,
                status=OutcomeStatus.FAILED,
                reason=str(exc) or exc.__class__.__name__,
                error_kind="unexpected_error",
            )

        if notification is None:
            return CustomerOutcome(
                customer_id=customer.id,
                status=OutcomeStatus.SKIPPED_ALREADY_NOTIFIED,
                interval_days=prediction.interval_days,
                days_until_next=status.days_until_next,
                reason="recorded_by_concurrent_sweep",
                attempts=attempts,
            )
        return CustomerOutcome(
            customer_id=customer.id,
            status=OutcomeStatus.NOTIFIED,
            interval_days=prediction.interval_days,
            days_until_next=status.days_until_next,
            attempts=attempts,
        )

    def _dispatch_with_retries(
        self,
        customer: Customer,
        prediction: PredictionResult,
        cycle_since: datetime | None = None,
    ) -> Tuple[Optional[Notification], int]:
        """Dispatch, retrying ``DispatchFailure`` up to ``dispatch_retries`` extra times."""

        max_attempts = self.policy.dispatch_retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                return self.dispatcher.dispatch(customer, prediction, cycle_since=cycle_since), attempt
            except DispatchFailure as exc:
                if attempt >= max_attempts:
                    exc.context["attempts"] = attempt
                    raise
                LOGGER.info(
                    "Retrying reminder to customer_id=%s (attempt %d of %d)",
                    customer.id,
                    attempt + 1,
                    max_attempts,
                )
        raise AssertionError("unreachable")  # pragma: no cover

    # ------------------------------------------------------------------
    def notify_now(self, customer_id: int) -> Notification:
        """Send a reminder immediately, skipping the due and ledger checks."""

        customer = self.store.get_customer(customer_id)
        if customer is None:
            raise NotFoundError("customer not found", customer_id=customer_id)

        with self.ledger.cycle_guard(customer_id):
            orders = self.store.list_orders(customer_id)
            prediction = estimate_interval(
                [order.order_date for order in orders], self.policy.averaging_policy
            )
            if prediction.interval_days is None:
                raise InsufficientHistoryError(
                    "at least two orders are required to send a reminder",
                    customer_id=customer_id,
                    order_count=prediction.order_count,
                )
            notification, _ = self._dispatch_with_retries(customer, prediction)
        return notification
