"""Format reminder messages and send them through the messaging gateway."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..core.config import DEFAULT_MESSAGE_TEMPLATE
from ..core.contacts import normalize_contact
from ..core.errors import DispatchFailure, InsufficientHistoryError
from ..models.schemas import Customer, Notification, PredictionResult
from .gateway import MessagingGateway
from .ledger_service import NotificationLedger

LOGGER = logging.getLogger(__name__)


def format_reminder(template: str, customer: Customer, interval_days: int) -> str:
    return template.format(name=customer.name, interval_days=interval_days)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Dispatcher:
    """Send one reminder and record it in the ledger once the gateway confirms.

    Failures are raised as ``DispatchFailure`` and never retried here; the
    caller decides whether to try again.
    """

    def __init__(
        self,
        gateway: MessagingGateway,
        ledger: NotificationLedger,
        template: str = DEFAULT_MESSAGE_TEMPLATE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.template = template
        self.clock = clock

    def dispatch(
        self,
        customer: Customer,
        prediction: PredictionResult,
        cycle_since: Optional[datetime] = None,
    ) -> Optional[Notification]:
        """Send the reminder for ``customer``.

        ``cycle_since`` makes the ledger write conditional on no other
        notification existing for the cycle starting at that instant.
        """
        if prediction.interval_days is None:
            raise InsufficientHistoryError(
                "at least two orders are required to predict an interval",
                customer_id=customer.id,
                order_count=prediction.order_count,
            )

        contact = normalize_contact(customer.contact)
        text = format_reminder(self.template, customer, prediction.interval_days)

        result = self.gateway.send(contact, text)
        if not result.ok:
            LOGGER.warning(
                "Reminder to customer_id=%s failed: %s", customer.id, result.reason
            )
            raise DispatchFailure(
                "messaging gateway failed to deliver reminder",
                customer_id=customer.id,
                reason=result.reason,
            )

        LOGGER.info(
            "Reminder sent to customer_id=%s name=%s interval=%s",
            customer.id,
            customer.name,
            prediction.interval_days,
        )
        return self.ledger.record(customer.id, text, self.clock(), since=cycle_since)
