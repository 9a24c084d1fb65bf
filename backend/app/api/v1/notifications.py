r"""backend\app\api\v1\notifications.py

On-demand reminders, the manual sweep and the notification history."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from ...core.errors import NotFoundError, ReminderError
from ...models import schemas
from ...services.container import ServiceContainer, get_services
from .errors import error_payload, http_error

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.post("/notifications/send/{customer_id}", response_model=schemas.Notification)
def notify_now(
    customer_id: int,
    services: ServiceContainer = Depends(get_services),
) -> schemas.Notification:
    """Send a reminder now, regardless of whether the customer is due."""

    LOGGER.info("Manual reminder requested for customer_id=%s", customer_id)
    try:
        return services.scheduler.notify_now(customer_id)
    except ReminderError as exc:
        raise http_error(exc) from exc


@router.get("/notifications/{customer_id}", response_model=List[schemas.Notification])
def list_notifications(
    customer_id: int,
    services: ServiceContainer = Depends(get_services),
) -> List[schemas.Notification]:
    """Return the customer's sent reminders, newest first."""

    try:
        if services.store.get_customer(customer_id) is None:
            raise NotFoundError("customer not found", customer_id=customer_id)
        return services.store.list_notifications(customer_id)
    except ReminderError as exc:
        raise http_error(exc) from exc


@router.post("/sweep")
def run_sweep(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Evaluate every customer now and return the per-customer outcomes."""

    LOGGER.info("Manual sweep requested")
    report = services.scheduler.sweep()
    if report.status == "aborted":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_payload(
                "sweep_aborted",
                str((report.error or {}).get("message", "unable to list customers")),
            ),
        )
    return report.summary()
