from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.app.core.errors import DispatchFailure, InsufficientHistoryError, ValidationError
from backend.app.models.schemas import Customer, PredictionResult
from backend.app.services.dispatch_service import Dispatcher, format_reminder
from backend.app.services.ledger_service import NotificationLedger

from conftest import FakeGateway, add_customer_with_orders

SENT_AT = datetime(2024, 1, 21, 12, tzinfo=timezone.utc)


def _prediction(days: int | None = 7) -> PredictionResult:
    if days is None:
        return PredictionResult(interval_days=None, confidence="insufficient", order_count=1)
    return PredictionResult(interval_days=days, confidence="ok", order_count=3)


def test_template_mentions_name_and_interval() -> None:
    customer = Customer(id=1, name="Ana", contact="5511987654321", created_at=SENT_AT)

    text = format_reminder("Oi {name}, a cada {interval_days} dias", customer, 7)

    assert text == "Oi Ana, a cada 7 dias"


def test_successful_send_is_recorded(store) -> None:
    customer = add_customer_with_orders(store, "Ana", "5511987654321", [0, 7])
    gateway = FakeGateway()
    dispatcher = Dispatcher(gateway, NotificationLedger(store), clock=lambda: SENT_AT)

    notification = dispatcher.dispatch(customer, _prediction(7))

    assert notification is not None
    assert notification.sent_at == SENT_AT
    assert gateway.sent[0][0] == "5511987654321"
    assert "Ana" in gateway.sent[0][1]
    assert "*7 dias*" in gateway.sent[0][1]
    assert store.last_notification(customer.id).message == gateway.sent[0][1]


def test_gateway_failure_raises_and_records_nothing(store) -> None:
    customer = add_customer_with_orders(store, "Ana", "5511987654321", [0, 7])
    gateway = FakeGateway(failing={"5511987654321"})
    dispatcher = Dispatcher(gateway, NotificationLedger(store), clock=lambda: SENT_AT)

    with pytest.raises(DispatchFailure) as excinfo:
        dispatcher.dispatch(customer, _prediction(7))

    assert excinfo.value.context["reason"] == "unreachable"
    assert excinfo.value.kind == "dispatch_failure"
    assert store.list_notifications(customer.id) == []


def test_malformed_contact_never_reaches_gateway(store) -> None:
    gateway = FakeGateway()
    dispatcher = Dispatcher(gateway, NotificationLedger(store), clock=lambda: SENT_AT)
    customer = Customer(id=99, name="Bad", contact="not-a-phone", created_at=SENT_AT)

    with pytest.raises(ValidationError):
        dispatcher.dispatch(customer, _prediction(7))

    assert gateway.attempts == []


def test_missing_interval_is_rejected(store) -> None:
    gateway = FakeGateway()
    dispatcher = Dispatcher(gateway, NotificationLedger(store), clock=lambda: SENT_AT)
    customer = Customer(id=1, name="Ana", contact="5511987654321", created_at=SENT_AT)

    with pytest.raises(InsufficientHistoryError):
        dispatcher.dispatch(customer, _prediction(None))

    assert gateway.attempts == []
