r"""backend\app\services\interval_service.py

Reorder interval estimation from a customer's order history.

The estimator is a closed-form statistic over the day gaps between
consecutive orders. Two averaging policies are supported:

* ``simple`` - the plain mean of all gaps.
* ``weighted`` - a recency-weighted mean where gap ``i`` (1-based) has weight
  ``i``, so the most recent gap counts the most.

All helpers are pure functions of their inputs and are kept top-level for
straightforward unit testing.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Iterable, List, Literal, Sequence

import numpy as np

from ..models.schemas import PredictionResult

AveragingPolicy = Literal["simple", "weighted"]
AVERAGING_POLICIES: tuple[str, ...] = ("simple", "weighted")

_SECONDS_PER_DAY = 86_400.0


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def days_between(start: date | datetime, end: date | datetime) -> int:
    """Return the whole days from ``start`` to ``end``, rounding partial days up.

    Calendar dates give exact day counts; datetimes are ceiled, so ``end``
    one hour after ``start`` counts as one day. Negative spans stay negative.
    Naive values are taken as UTC when compared with aware ones.
    """
    first = _as_datetime(start)
    second = _as_datetime(end)
    if (first.tzinfo is None) != (second.tzinfo is None):
        first = _naive_utc(first)
        second = _naive_utc(second)
    return int(math.ceil((second - first).total_seconds() / _SECONDS_PER_DAY))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (``2.5 -> 3``)."""

    return int(math.floor(value + 0.5))


def order_gaps(order_dates: Sequence[date | datetime]) -> List[int]:
    """Return consecutive day gaps, clamping out-of-order (negative) gaps to zero."""

    return [
        max(days_between(previous, current), 0)
        for previous, current in zip(order_dates, order_dates[1:])
    ]


def average_gap(gaps: Sequence[int], policy: AveragingPolicy = "simple") -> float:
    """Return the unrounded average of ``gaps`` under ``policy``."""

    if not gaps:
        raise ValueError("gaps must contain at least one value")
    values = np.asarray(gaps, dtype=float)
    if policy == "simple":
        return float(values.mean())
    if policy == "weighted":
        weights = np.arange(1, values.size + 1, dtype=float)
        return float(np.average(values, weights=weights))
    raise ValueError(f"unknown averaging policy: {policy!r}")


def estimate_interval(
    order_dates: Iterable[date | datetime],
    policy: AveragingPolicy = "simple",
) -> PredictionResult:
    """Predict the reorder interval, in days, from chronologically ordered dates.

    Fewer than two orders yields an ``insufficient`` result with no interval.
    Otherwise the rounded average gap is returned, never less than one day so
    that same-day duplicates still produce a usable cadence.
    """
    if policy not in AVERAGING_POLICIES:
        raise ValueError(f"unknown averaging policy: {policy!r}")

    dates = list(order_dates)
    if len(dates) < 2:
        return PredictionResult(
            interval_days=None,
            confidence="insufficient",
            policy=policy,
            order_count=len(dates),
        )

    interval = round_half_up(average_gap(order_gaps(dates), policy))
    return PredictionResult(
        interval_days=max(interval, 1),
        confidence="ok",
        policy=policy,
        order_count=len(dates),
    )
