r"""backend\app\api\v1\orders.py

Record deliveries and list a customer's order history."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends

from ...core.errors import NotFoundError, ReminderError
from ...models import schemas
from ...services.container import ServiceContainer, get_services
from .errors import http_error

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.post("/orders", response_model=schemas.Order)
def create_order(
    body: schemas.OrderCreate,
    services: ServiceContainer = Depends(get_services),
) -> schemas.Order:
    """Record an order; the date defaults to today in the configured time zone."""

    order_date = body.order_date or services.scheduler.today()
    try:
        order = services.store.add_order(body.customer_id, order_date, quantity=body.quantity)
    except ReminderError as exc:
        LOGGER.warning("Order rejected for customer_id=%s: %s", body.customer_id, exc)
        raise http_error(exc) from exc
    LOGGER.info(
        "Order recorded customer_id=%s date=%s quantity=%s",
        order.customer_id,
        order.order_date,
        order.quantity,
    )
    return order


@router.get("/orders/{customer_id}", response_model=List[schemas.Order])
def list_orders(
    customer_id: int,
    services: ServiceContainer = Depends(get_services),
) -> List[schemas.Order]:
    """Return the customer's orders, newest first."""

    try:
        if services.store.get_customer(customer_id) is None:
            raise NotFoundError("customer not found", customer_id=customer_id)
        orders = services.store.list_orders(customer_id)
    except ReminderError as exc:
        raise http_error(exc) from exc
    return list(reversed(orders))
