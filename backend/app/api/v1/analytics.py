r"""backend\app\api\v1\analytics.py

Per-customer analytics and the dashboard summary."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ...core.errors import ReminderError
from ...models import schemas
from ...services.container import ServiceContainer, get_services
from .errors import http_error

router = APIRouter()


@router.get("/analytics/{customer_id}", response_model=schemas.CustomerAnalytics)
def customer_analytics(
    customer_id: int,
    services: ServiceContainer = Depends(get_services),
) -> schemas.CustomerAnalytics:
    """Return order volumes, the predicted interval and the due status."""

    try:
        return services.analytics.customer_analytics(customer_id)
    except ReminderError as exc:
        raise http_error(exc) from exc


@router.get("/dashboard", response_model=schemas.DashboardSummary)
def dashboard(services: ServiceContainer = Depends(get_services)) -> schemas.DashboardSummary:
    try:
        return services.analytics.dashboard()
    except ReminderError as exc:
        raise http_error(exc) from exc
