from __future__ import annotations

import sys
import threading
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.core.config import ReminderPolicy, Settings  # noqa: E402
from backend.app.db.store import SqlReminderStore  # noqa: E402
from backend.app.services.container import build_services  # noqa: E402
from backend.app.services.gateway import MessagingGateway, SendResult  # noqa: E402

DAY0 = date(2024, 1, 1)
# 12:00 UTC is 09:00 in America/Sao_Paulo, so "today" is the same date in both.
NOW = datetime(2024, 1, 21, 12, 0, tzinfo=timezone.utc)


def day(n: int) -> date:
    return DAY0 + timedelta(days=n)


class FakeGateway(MessagingGateway):
    """Records sends; contacts listed in ``failing`` get a failure result."""

    def __init__(self, failing: Iterable[str] = (), fail_times: int | None = None) -> None:
        self.failing = set(failing)
        self.fail_times = fail_times
        self.sent: List[Tuple[str, str]] = []
        self.attempts: List[str] = []
        self._lock = threading.Lock()

    def send(self, contact: str, text: str) -> SendResult:
        with self._lock:
            self.attempts.append(contact)
            if contact in self.failing:
                if self.fail_times is None or self.attempts.count(contact) <= self.fail_times:
                    return SendResult.failure("unreachable")
            self.sent.append((contact, text))
        return SendResult.success("wamid.test")


class Clock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def store(tmp_path: Path, clock: Clock) -> SqlReminderStore:
    store = SqlReminderStore(f"sqlite:///{tmp_path / 'reminders.db'}", clock=clock).init()
    yield store
    store.dispose()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    config_dir = tmp_path / "configs"
    config_dir.mkdir()
    return Settings(
        db_url=f"sqlite:///{tmp_path / 'reminders.db'}",
        config_dir=str(config_dir),
        api_token=None,
        rate_limit_per_min=0,
        enable_scheduler=False,
        gateway_mode="dry_run",
    )


@pytest.fixture()
def services(settings: Settings, store: SqlReminderStore, gateway: FakeGateway, clock: Clock):
    return build_services(
        settings,
        store=store,
        gateway=gateway,
        policy=ReminderPolicy(),
        clock=clock,
    )


def add_customer_with_orders(store: SqlReminderStore, name: str, contact: str, days: Iterable[int]):
    customer = store.create_customer(name, contact)
    for n in days:
        store.add_order(customer.id, day(n))
    return customer
