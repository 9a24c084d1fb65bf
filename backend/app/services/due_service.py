"""Decide whether a customer is due for a reorder reminder."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional

from ..models.schemas import DueStatus
from .interval_service import days_between

DEFAULT_LEAD_TIME_DAYS = 1


def detect_due(
    interval_days: Optional[int],
    last_order_date: Optional[date],
    today: date | datetime,
    lead_time_days: int = DEFAULT_LEAD_TIME_DAYS,
) -> DueStatus:
    """Return the due flag and day counts for one customer.

    A customer is due once ``days_since_last_order >= interval_days - lead_time_days``,
    i.e. the reminder fires ``lead_time_days`` before the predicted need date.
    Without an interval (or without any order) the customer is never due.
    """
    if last_order_date is None:
        return DueStatus(due=False)

    days_since = days_between(last_order_date, today)
    if interval_days is None:
        return DueStatus(due=False, days_since_last_order=days_since)

    return DueStatus(
        due=days_since >= interval_days - lead_time_days,
        days_since_last_order=days_since,
        days_until_next=interval_days - days_since,
        next_order_date=_to_date(last_order_date) + timedelta(days=interval_days),
    )


def _to_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value
