r"""backend\app\db\store.py

Persistence capability consumed by the reminder engine.

``ReminderStore`` is the abstract interface the engine depends on; the
``SqlReminderStore`` implementation backs it with SQLAlchemy (SQLite by
default). Every public operation runs in its own session scope that commits
on success and rolls back on failure, which gives read-your-writes semantics
to concurrent sweeps sharing one store.
"""

from __future__ import annotations

import contextlib
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.contacts import normalize_contact
from ..core.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from ..models.schemas import Customer, Notification, Order
from .models import Base, CustomerRow, NotificationRow, OrderRow

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (SQLite drops tzinfo)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ReminderStore(ABC):
    """Abstract persistence capability for customers, orders and notifications."""

    @abstractmethod
    def list_customers(self) -> List[Customer]:
        ...

    @abstractmethod
    def get_customer(self, customer_id: int) -> Optional[Customer]:
        ...

    @abstractmethod
    def list_orders(self, customer_id: int) -> List[Order]:
        """Return the customer's orders in chronological order."""
        ...

    @abstractmethod
    def insert_notification(self, customer_id: int, message: str, sent_at: datetime) -> Notification:
        ...

    @abstractmethod
    def insert_notification_if_absent(
        self,
        customer_id: int,
        message: str,
        sent_at: datetime,
        since: datetime,
    ) -> Optional[Notification]:
        """Insert unless a notification at or after ``since`` exists; return ``None`` if skipped."""
        ...

    @abstractmethod
    def last_notification(self, customer_id: int) -> Optional[Notification]:
        ...

    # Management operations used by the HTTP surface
    @abstractmethod
    def create_customer(self, name: str, contact: str) -> Customer:
        ...

    @abstractmethod
    def delete_customer(self, customer_id: int) -> None:
        ...

    @abstractmethod
    def add_order(self, customer_id: int, order_date: date, quantity: int = 1) -> Order:
        ...

    @abstractmethod
    def list_notifications(self, customer_id: int) -> List[Notification]:
        ...

    @abstractmethod
    def counts(self) -> Dict[str, int]:
        ...


class SqlReminderStore(ReminderStore):
    """SQLAlchemy-backed store.

    ``clock`` stamps ``created_at`` on new customers and orders; the ledger
    uses an order's ``created_at`` to tell reminders sent before it was
    recorded from those sent after.

    Usage:
        store = SqlReminderStore("sqlite:///./water_delivery.db")
        store.init()
        customer = store.create_customer("Ana", "5511987654321")
        store.add_order(customer.id, date(2024, 1, 5), quantity=2)
    """

    def __init__(
        self,
        db_url: str = "sqlite:///./water_delivery.db",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.db_url = db_url
        self.clock = clock or _utcnow
        engine_kwargs: Dict[str, object] = {"future": True}
        if db_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 10.0}
            if db_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every session sees the same in-memory database.
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(db_url, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

    def init(self) -> "SqlReminderStore":
        """Create the tables if they do not exist yet."""
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as exc:
            raise PersistenceError("unable to initialise database", db_url=self.db_url) from exc
        LOGGER.info("Reminder database initialised: %s", self.db_url)
        return self

    def dispose(self) -> None:
        self.engine.dispose()

    @contextlib.contextmanager
    def _session_scope(self, operation: str, **context: object) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            LOGGER.error("Store operation %s failed: %s", operation, exc)
            raise PersistenceError(f"{operation} failed", operation=operation, **context) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    def list_customers(self) -> List[Customer]:
        with self._session_scope("list_customers") as session:
            rows = session.scalars(select(CustomerRow).order_by(CustomerRow.id)).all()
            return [_customer(row) for row in rows]

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        with self._session_scope("get_customer", customer_id=customer_id) as session:
            row = session.get(CustomerRow, customer_id)
            return _customer(row) if row is not None else None

    def list_orders(self, customer_id: int) -> List[Order]:
        with self._session_scope("list_orders", customer_id=customer_id) as session:
            rows = session.scalars(
                select(OrderRow)
                .where(OrderRow.customer_id == customer_id)
                .order_by(OrderRow.order_date, OrderRow.id)
            ).all()
            return [_order(row) for row in rows]

    def insert_notification(self, customer_id: int, message: str, sent_at: datetime) -> Notification:
        with self._session_scope("insert_notification", customer_id=customer_id) as session:
            row = NotificationRow(customer_id=customer_id, message=message, sent_at=as_utc(sent_at))
            session.add(row)
            session.flush()
            return _notification(row)

    def insert_notification_if_absent(
        self,
        customer_id: int,
        message: str,
        sent_at: datetime,
        since: datetime,
    ) -> Optional[Notification]:
        with self._session_scope("insert_notification_if_absent", customer_id=customer_id) as session:
            existing = session.scalar(
                select(func.count(NotificationRow.id)).where(
                    NotificationRow.customer_id == customer_id,
                    NotificationRow.sent_at >= as_utc(since),
                )
            )
            if existing:
                return None
            row = NotificationRow(customer_id=customer_id, message=message, sent_at=as_utc(sent_at))
            session.add(row)
            session.flush()
            return _notification(row)

    def last_notification(self, customer_id: int) -> Optional[Notification]:
        with self._session_scope("last_notification", customer_id=customer_id) as session:
            row = session.scalars(
                select(NotificationRow)
                .where(NotificationRow.customer_id == customer_id)
                .order_by(NotificationRow.sent_at.desc(), NotificationRow.id.desc())
                .limit(1)
            ).first()
            return _notification(row) if row is not None else None

    # ------------------------------------------------------------------
    def create_customer(self, name: str, contact: str) -> Customer:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name must not be empty")
        contact = normalize_contact(contact)

        session = self._session_factory()
        try:
            row = CustomerRow(name=name, contact=contact, created_at=as_utc(self.clock()))
            session.add(row)
            session.commit()
            return _customer(row)
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("contact already registered", contact=contact) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError("create_customer failed", operation="create_customer") from exc
        finally:
            session.close()

    def delete_customer(self, customer_id: int) -> None:
        with self._session_scope("delete_customer", customer_id=customer_id) as session:
            row = session.get(CustomerRow, customer_id)
            if row is None:
                raise NotFoundError("customer not found", customer_id=customer_id)
            session.delete(row)

    def add_order(self, customer_id: int, order_date: date, quantity: int = 1) -> Order:
        if order_date is None:
            raise ValidationError("order_date must not be empty", customer_id=customer_id)
        if quantity is None or int(quantity) < 1:
            raise ValidationError("quantity must be at least 1", customer_id=customer_id)

        with self._session_scope("add_order", customer_id=customer_id) as session:
            if session.get(CustomerRow, customer_id) is None:
                raise NotFoundError("customer not found", customer_id=customer_id)
            row = OrderRow(
                customer_id=customer_id,
                order_date=order_date,
                quantity=int(quantity),
                created_at=as_utc(self.clock()),
            )
            session.add(row)
            session.flush()
            return _order(row)

    def list_notifications(self, customer_id: int) -> List[Notification]:
        with self._session_scope("list_notifications", customer_id=customer_id) as session:
            rows = session.scalars(
                select(NotificationRow)
                .where(NotificationRow.customer_id == customer_id)
                .order_by(NotificationRow.sent_at.desc(), NotificationRow.id.desc())
            ).all()
            return [_notification(row) for row in rows]

    def counts(self) -> Dict[str, int]:
        with self._session_scope("counts") as session:
            return {
                "customers": int(session.scalar(select(func.count(CustomerRow.id))) or 0),
                "orders": int(session.scalar(select(func.count(OrderRow.id))) or 0),
                "notifications": int(session.scalar(select(func.count(NotificationRow.id))) or 0),
            }


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _customer(row: CustomerRow) -> Customer:
    return Customer(id=row.id, name=row.name, contact=row.contact, created_at=as_utc(row.created_at))


def _order(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        customer_id=row.customer_id,
        order_date=row.order_date,
        quantity=row.quantity,
        created_at=as_utc(row.created_at),
    )


def _notification(row: NotificationRow) -> Notification:
    return Notification(
        id=row.id,
        customer_id=row.customer_id,
        message=row.message,
        sent_at=as_utc(row.sent_at),
    )
