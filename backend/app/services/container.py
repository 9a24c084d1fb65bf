"""Wiring for the reminder engine's collaborators.

The FastAPI app builds one ``ServiceContainer`` at startup and keeps it on
``app.state.services``; routes receive it through ``get_services``. Tests
build their own container around an in-memory store and a fake gateway.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request

from ..core.config import ReminderPolicy, Settings, get_settings, load_reminder_policy
from ..db.store import ReminderStore, SqlReminderStore
from .analytics_service import AnalyticsService
from .dispatch_service import Dispatcher
from .gateway import MessagingGateway, build_gateway
from .ledger_service import NotificationLedger
from .scheduler_service import ReminderScheduler
from .trigger import SweepTrigger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ServiceContainer:
    settings: Settings
    store: ReminderStore
    gateway: MessagingGateway
    ledger: NotificationLedger
    dispatcher: Dispatcher
    scheduler: ReminderScheduler
    analytics: AnalyticsService
    trigger: SweepTrigger

    @property
    def policy(self) -> ReminderPolicy:
        return self.scheduler.policy

    def apply_policy(self, policy: ReminderPolicy) -> None:
        self.scheduler.apply_policy(policy)
        self.trigger.reschedule()

    def close(self) -> None:
        self.trigger.stop()
        self.gateway.close()


def build_services(
    settings: Optional[Settings] = None,
    *,
    store: Optional[ReminderStore] = None,
    gateway: Optional[MessagingGateway] = None,
    policy: Optional[ReminderPolicy] = None,
    clock: Callable[[], datetime] = _utcnow,
) -> ServiceContainer:
    """Assemble the engine from settings, overriding any collaborator given."""

    settings = settings or get_settings()
    if store is None:
        store = SqlReminderStore(settings.db_url, clock=clock).init()
    gateway = gateway or build_gateway(settings)
    policy = policy or load_reminder_policy(settings.config_dir)

    ledger = NotificationLedger(store)
    dispatcher = Dispatcher(gateway, ledger, template=policy.message_template, clock=clock)
    scheduler = ReminderScheduler(store, ledger, dispatcher, policy=policy, clock=clock)
    return ServiceContainer(
        settings=settings,
        store=store,
        gateway=gateway,
        ledger=ledger,
        dispatcher=dispatcher,
        scheduler=scheduler,
        analytics=AnalyticsService(store, ledger, scheduler),
        trigger=SweepTrigger(scheduler),
    )


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the app's container."""
    return request.app.state.services
