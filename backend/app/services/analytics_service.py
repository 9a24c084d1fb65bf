r"""backend\app\services\analytics_service.py

Per-customer order analytics and dashboard counts.

Order volumes are aggregated with pandas; the reorder interval and due
status come from the same estimator and detector the sweep uses, so the
numbers shown to operators always match what the sweep would decide.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

import pandas as pd

from ..core.errors import NotFoundError
from ..db.store import ReminderStore
from ..models.schemas import CustomerAnalytics, DashboardSummary, MonthlyVolume, Order
from .interval_service import order_gaps
from .ledger_service import NotificationLedger
from .scheduler_service import ReminderScheduler

LOGGER = logging.getLogger(__name__)


def orders_frame(orders: List[Order]) -> pd.DataFrame:
    """Return the orders as a frame indexed by ``order_date``."""

    frame = pd.DataFrame(
        [{"order_date": pd.Timestamp(o.order_date), "quantity": int(o.quantity)} for o in orders],
        columns=["order_date", "quantity"],
    )
    return frame.set_index("order_date").sort_index(kind="stable")


def monthly_volume(frame: pd.DataFrame) -> List[MonthlyVolume]:
    """Gallons and order counts per calendar month, including empty months."""

    if frame.empty:
        return []
    grouped = frame["quantity"].resample("MS").agg(["sum", "count"])
    return [
        MonthlyVolume(month=stamp.strftime("%Y-%m"), gallons=int(row["sum"]), orders=int(row["count"]))
        for stamp, row in grouped.iterrows()
    ]


class AnalyticsService:
    """Read-only views over the store for the HTTP surface."""

    def __init__(
        self,
        store: ReminderStore,
        ledger: NotificationLedger,
        scheduler: ReminderScheduler,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.scheduler = scheduler

    def customer_analytics(self, customer_id: int, today: Optional[date] = None) -> CustomerAnalytics:
        if self.store.get_customer(customer_id) is None:
            raise NotFoundError("customer not found", customer_id=customer_id)

        orders = self.store.list_orders(customer_id)
        today = today or self.scheduler.today()
        prediction, status = self.scheduler.evaluate(orders, today)

        frame = orders_frame(orders)
        total_gallons = int(frame["quantity"].sum()) if not frame.empty else 0
        mean_gallons = round(float(frame["quantity"].mean()), 2) if not frame.empty else None

        return CustomerAnalytics(
            customer_id=customer_id,
            total_orders=len(orders),
            total_gallons=total_gallons,
            mean_gallons_per_order=mean_gallons,
            gaps_days=order_gaps([o.order_date for o in orders]),
            average_days=prediction.interval_days,
            policy=prediction.policy,
            last_order_date=orders[-1].order_date if orders else None,
            next_order_date=status.next_order_date,
            days_until_next=status.days_until_next,
            due=status.due,
            last_notified_at=self.ledger.last_notified_at(customer_id),
            monthly=monthly_volume(frame),
            orders=orders,
        )

    def dashboard(self) -> DashboardSummary:
        return DashboardSummary(**self.store.counts())
