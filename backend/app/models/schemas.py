r"""backend\app\models\schemas.py

Pydantic models used throughout the API and the reminder engine.

These models serve as request payload validators, response serialisation
schemas and the value objects passed between the engine's components.
Using typed models ensures that the store, the services and the HTTP layer
agree on the structure of the data being exchanged.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Customer(BaseModel):
    """A customer receiving recurring deliveries."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    contact: str = Field(..., description="Phone-like identifier used by the messaging gateway")
    created_at: datetime


class Order(BaseModel):
    """A single delivery ordered by a customer."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    order_date: date
    quantity: int = Field(1, description="Number of gallons delivered")
    created_at: datetime


class Notification(BaseModel):
    """A reminder that was confirmed sent by the messaging gateway."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    message: str
    sent_at: datetime


class CustomerCreate(BaseModel):
    """Payload for registering a customer."""

    name: str = Field(..., min_length=1)
    contact: str = Field(..., min_length=1, description="Phone number, e.g. 5511987654321")

    @field_validator("name", "contact", mode="before")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip() if isinstance(value, str) else value


class OrderCreate(BaseModel):
    """Payload for recording an order. The date defaults to today."""

    customer_id: int
    quantity: int = Field(1, ge=1)
    order_date: Optional[date] = None


class PredictionResult(BaseModel):
    """Estimated reorder cadence for one customer."""

    interval_days: Optional[int] = Field(None, description="Predicted days between orders")
    confidence: Literal["insufficient", "ok"]
    policy: Literal["simple", "weighted"] = "simple"
    order_count: int = 0


class DueStatus(BaseModel):
    """Whether a customer is due for a reminder on a given day."""

    due: bool
    days_since_last_order: Optional[int] = None
    days_until_next: Optional[int] = Field(None, description="Negative when overdue")
    next_order_date: Optional[date] = None


class OutcomeStatus(str, Enum):
    NOTIFIED = "notified"
    SKIPPED_NOT_DUE = "skipped_not_due"
    SKIPPED_ALREADY_NOTIFIED = "skipped_already_notified"
    FAILED = "failed"


class CustomerOutcome(BaseModel):
    """Result of evaluating one customer during a sweep."""

    customer_id: int
    status: OutcomeStatus
    interval_days: Optional[int] = None
    days_until_next: Optional[int] = None
    reason: Optional[str] = None
    error_kind: Optional[str] = None
    attempts: int = 0


class SweepReport(BaseModel):
    """Outcome of one full pass over all customers."""

    status: Literal["completed", "aborted", "cancelled"]
    started_at: datetime
    finished_at: datetime
    error: Optional[Dict[str, object]] = None
    outcomes: List[CustomerOutcome] = Field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        tally = {status.value: 0 for status in OutcomeStatus}
        for outcome in self.outcomes:
            tally[outcome.status.value] += 1
        return tally

    @property
    def nothing_due(self) -> bool:
        """True when the sweep completed and no customer needed a reminder."""
        return self.status == "completed" and all(
            outcome.status != OutcomeStatus.FAILED and outcome.status != OutcomeStatus.NOTIFIED
            for outcome in self.outcomes
        )

    @property
    def all_failed(self) -> bool:
        """True when the batch aborted or every attempted customer failed."""
        if self.status == "aborted":
            return True
        attempted = [
            outcome
            for outcome in self.outcomes
            if outcome.status in (OutcomeStatus.NOTIFIED, OutcomeStatus.FAILED)
        ]
        return bool(attempted) and all(o.status == OutcomeStatus.FAILED for o in attempted)

    def summary(self) -> Dict[str, object]:
        payload = self.model_dump(mode="json")
        payload["counts"] = self.counts
        payload["nothing_due"] = self.nothing_due
        payload["all_failed"] = self.all_failed
        return payload


class MonthlyVolume(BaseModel):
    month: str
    gallons: int
    orders: int


class CustomerAnalytics(BaseModel):
    """Per-customer order statistics and reminder forecast."""

    customer_id: int
    total_orders: int
    total_gallons: int
    mean_gallons_per_order: Optional[float] = None
    gaps_days: List[int] = Field(default_factory=list)
    average_days: Optional[int] = None
    policy: Literal["simple", "weighted"] = "simple"
    last_order_date: Optional[date] = None
    next_order_date: Optional[date] = None
    days_until_next: Optional[int] = None
    due: bool = False
    last_notified_at: Optional[datetime] = None
    monthly: List[MonthlyVolume] = Field(default_factory=list)
    orders: List[Order] = Field(default_factory=list)


class DashboardSummary(BaseModel):
    customers: int
    orders: int
    notifications: int
