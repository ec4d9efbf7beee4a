"""
Order persistence.

OrderStore is the seam the lifecycle engine talks to; the engine never
touches a session directly. SqlOrderStore is the shipped adapter (any
SQLAlchemy URL). All mutations of an existing order go through update(),
which is a read-modify-write under that order's lock.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import NotFound, StoreUnavailable
from models.mixins import utcnow
from models.order_items import OrderItem
from models.orders import Order
from utils.locks import KeyedLock, order_locks
from utils.logger import get_logger

logger = get_logger(__name__)

Mutation = Callable[[Order], None]
AfterCommit = Callable[[Order], None]


class OrderStore(ABC):

    @abstractmethod
    def get(self, order_id: int) -> Optional[Order]:
        ...

    @abstractmethod
    def list_orders(self, status: str | None = None, user_id: int | None = None,
             delivery_partner_id: int | None = None, limit: int = 50,
             offset: int = 0) -> tuple[list[Order], int]:
        ...

    @abstractmethod
    def atomic(self):
        """Context manager: everything inside commits together or not at all."""

    @abstractmethod
    def add(self, order: Order, items: list[OrderItem]) -> Order:
        """Stage a new order and its items; must be called inside atomic()."""

    @abstractmethod
    def update(self, order_id: int, mutate: Mutation,
               after_commit: AfterCommit | None = None) -> Order:
        """
        Apply mutate to the current row of order_id and persist it.

        Raises NotFound for an unknown id. Any exception raised by mutate
        aborts the write. after_commit runs once the write is durable, still
        inside the per-order critical section.
        """

    @abstractmethod
    def count_by_status(self) -> dict[str, int]:
        ...

    @abstractmethod
    def sum_delivered_revenue(self) -> int:
        ...


class SqlOrderStore(OrderStore):

    def __init__(self, db: Session, locks: KeyedLock = order_locks):
        self.db = db
        self.locks = locks

    def get(self, order_id: int) -> Optional[Order]:
        try:
            return self.db.get(Order, order_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise self._unavailable(exc, "get") from exc

    def list_orders(self, status=None, user_id=None, delivery_partner_id=None, limit=50, offset=0):
        query = select(Order)
        if status is not None:
            query = query.where(Order.status == status)
        if user_id is not None:
            query = query.where(Order.user_id == user_id)
        if delivery_partner_id is not None:
            query = query.where(Order.delivery_partner_id == delivery_partner_id)

        try:
            total = self.db.scalar(select(func.count()).select_from(query.subquery()))
            orders = self.db.scalars(
                query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
            ).all()
        except SQLAlchemyError as exc:
            raise self._unavailable(exc, "list") from exc

        return list(orders), total or 0

    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise self._unavailable(exc, "commit") from exc
        except Exception:
            self.db.rollback()
            raise

    def add(self, order: Order, items: list[OrderItem]) -> Order:
        order.items = items
        self.db.add(order)
        # Assigns ids so callers can reference the order inside the same transaction
        self.db.flush()
        return order

    def update(self, order_id: int, mutate: Mutation, after_commit: AfterCommit | None = None) -> Order:
        with self.locks.hold(order_id):
            with self.atomic():
                order = self.get(order_id)
                if order is None:
                    raise NotFound("Order not found")

                mutate(order)

                order.version = (order.version or 0) + 1
                order.updated_at = utcnow()

            self.db.refresh(order)

            if after_commit is not None:
                after_commit(order)

        return order

    def count_by_status(self) -> dict[str, int]:
        try:
            rows = self.db.execute(
                select(Order.status, func.count(Order.id)).group_by(Order.status)
            ).all()
        except SQLAlchemyError as exc:
            raise self._unavailable(exc, "count") from exc
        return {status: count for status, count in rows}

    def sum_delivered_revenue(self) -> int:
        try:
            return self.db.scalar(
                select(func.coalesce(func.sum(Order.total), 0)).where(Order.status == "delivered")
            ) or 0
        except SQLAlchemyError as exc:
            raise self._unavailable(exc, "sum") from exc

    @staticmethod
    def _unavailable(exc: SQLAlchemyError, operation: str) -> StoreUnavailable:
        logger.error(
            f"Order store {operation} failed: {str(exc)}",
            extra={"operation": operation, "error_type": type(exc).__name__},
            exc_info=True
        )
        return StoreUnavailable("Order store unavailable")
