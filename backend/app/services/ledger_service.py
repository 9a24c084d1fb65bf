r"""backend\app\services\ledger_service.py

Notification ledger: the durable record of sent reminders.

The ledger answers "was this customer already notified for the current due
cycle?" A cycle starts when the customer's most recent order was recorded,
or at local midnight of its order date if that is later (pre-booked
deliveries). A notification sent at or after that instant suppresses further
reminders until a newer order is recorded.

Check, send and record must not interleave for the same customer, so the
ledger hands out a per-customer lock via :meth:`NotificationLedger.cycle_guard`.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from datetime import datetime, time, timezone, tzinfo
from typing import Dict, Iterator, Optional
from zoneinfo import ZoneInfo

from ..db.store import ReminderStore, as_utc
from ..models.schemas import Notification, Order

LOGGER = logging.getLogger(__name__)


def cycle_start(last_order: Order, tz: str | tzinfo = "UTC") -> datetime:
    """Return the UTC instant from which notifications count for a cycle.

    ``tz`` is the zone the order's calendar date belongs to. A reminder that
    led to the order was sent before the order was recorded, so it never
    counts for the cycle the order opens.
    """
    zone = ZoneInfo(tz) if isinstance(tz, str) else tz
    day_start = datetime.combine(last_order.order_date, time.min, tzinfo=zone).astimezone(timezone.utc)
    return max(as_utc(last_order.created_at), day_start)


class KeyedLocks:
    """Per-key mutual exclusion with reference-counted eviction.

    An entry lives only while at least one thread holds or waits on its lock,
    so the map never grows beyond the number of keys in flight.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, list] = {}

    @contextlib.contextmanager
    def hold(self, key: int) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        lock: threading.Lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class NotificationLedger:
    """Append-only record of dispatched notifications with duplicate suppression."""

    def __init__(self, store: ReminderStore, locks: KeyedLocks | None = None) -> None:
        self.store = store
        self.locks = locks or KeyedLocks()

    def cycle_guard(self, customer_id: int) -> contextlib.AbstractContextManager:
        """Serialise check + send + record for one customer within this process."""
        return self.locks.hold(customer_id)

    def record(
        self,
        customer_id: int,
        message: str,
        sent_at: datetime,
        since: Optional[datetime] = None,
    ) -> Optional[Notification]:
        """Append a notification.

        With ``since`` (a :func:`cycle_start` instant) set, the insert is
        conditional: if another writer already recorded a notification for
        that cycle, nothing is written and ``None`` is returned.
        """
        if since is None:
            return self.store.insert_notification(customer_id, message, sent_at)

        notification = self.store.insert_notification_if_absent(
            customer_id, message, sent_at, since=since
        )
        if notification is None:
            LOGGER.warning(
                "Notification for customer_id=%s already recorded for cycle starting %s",
                customer_id,
                since,
            )
        return notification

    def last_notified_at(self, customer_id: int) -> Optional[datetime]:
        last = self.store.last_notification(customer_id)
        return last.sent_at if last is not None else None

    def already_notified(self, customer_id: int, since: datetime) -> bool:
        """True when a notification exists at or after the cycle start ``since``."""

        last = self.last_notified_at(customer_id)
        return last is not None and last >= as_utc(since)
