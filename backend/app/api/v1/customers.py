r"""backend\app\api\v1\customers.py

Customer registration and listing."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status

from ...core.errors import NotFoundError, ReminderError
from ...models import schemas
from ...services.container import ServiceContainer, get_services
from .errors import http_error

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.post("/customers", response_model=schemas.Customer, status_code=status.HTTP_201_CREATED)
def create_customer(
    body: schemas.CustomerCreate,
    services: ServiceContainer = Depends(get_services),
) -> schemas.Customer:
    """Register a customer. The contact must be unique."""

    try:
        customer = services.store.create_customer(body.name, body.contact)
    except ReminderError as exc:
        LOGGER.warning("Customer registration rejected: %s", exc)
        raise http_error(exc) from exc
    LOGGER.info("Customer registered customer_id=%s", customer.id)
    return customer


@router.get("/customers", response_model=List[schemas.Customer])
def list_customers(services: ServiceContainer = Depends(get_services)) -> List[schemas.Customer]:
    try:
        return services.store.list_customers()
    except ReminderError as exc:
        raise http_error(exc) from exc


@router.get("/customers/{customer_id}", response_model=schemas.Customer)
def get_customer(
    customer_id: int,
    services: ServiceContainer = Depends(get_services),
) -> schemas.Customer:
    try:
        customer = services.store.get_customer(customer_id)
        if customer is None:
            raise NotFoundError("customer not found", customer_id=customer_id)
    except ReminderError as exc:
        raise http_error(exc) from exc
    return customer


@router.delete("/customers/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(
    customer_id: int,
    services: ServiceContainer = Depends(get_services),
) -> Response:
    """Delete a customer together with their orders and notifications."""

    try:
        services.store.delete_customer(customer_id)
    except ReminderError as exc:
        raise http_error(exc) from exc
    LOGGER.info("Customer deleted customer_id=%s", customer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
