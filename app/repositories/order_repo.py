import uuid
from datetime import date, datetime

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, select

from app.models.order import (
    Order,
    OrderItem,
    OrderLog,
    OrderNumberCounter,
    OrderStatus,
    PaymentStatus,
)


class OrderRepository:
    """
    Data access layer for orders, order_items, order_logs and the
    daily order-number counter.

    NOTE:
      - No commits here; order creation is a multi-step transaction.
        The service is responsible for committing.
    """

    # ---- Orders ----

    def list_for_user(
        self,
        session: Session,
        user_id: uuid.UUID,
        skip: int = 0,
        limit: int = 50,
        status: OrderStatus | None = None,
        payment_status: PaymentStatus | None = None,
    ) -> list[Order]:
        stmt = select(Order).where(Order.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        if payment_status is not None:
            stmt = stmt.where(Order.payment_status == payment_status)
        stmt = stmt.order_by(Order.created_at.desc()).offset(skip).limit(limit)
        return list(session.exec(stmt).all())

    def list_all(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
        status: OrderStatus | None = None,
    ) -> list[Order]:
        stmt = select(Order)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        stmt = stmt.order_by(Order.created_at.desc()).offset(skip).limit(limit)
        return list(session.exec(stmt).all())

    def get_by_id(self, session: Session, order_id: uuid.UUID) -> Order | None:
        return session.get(Order, order_id)

    def get_for_update(self, session: Session, order_id: uuid.UUID) -> Order | None:
        """Row-locked read; serializes concurrent transitions of one order."""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(stmt).first()

    def get_by_number(self, session: Session, order_number: str) -> Order | None:
        stmt = select(Order).where(Order.order_number == order_number)
        return session.exec(stmt).first()

    def list_expired_pending(self, session: Session, cutoff: datetime) -> list[Order]:
        """Orders still pending with unpaid status created before `cutoff`."""
        stmt = (
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING,
                Order.payment_status == PaymentStatus.PENDING,
                Order.created_at < cutoff,
            )
            .order_by(Order.created_at)
        )
        return list(session.exec(stmt).all())

    def create_order(self, session: Session, order: Order) -> Order:
        """
        Insert an Order without committing, but ensure id is populated.
        """
        session.add(order)
        session.flush()  # Assign PK
        return order

    def update_order(self, session: Session, order: Order) -> Order:
        session.add(order)
        session.flush()
        return order

    # ---- Order items ----

    def list_items_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[OrderItem]:
        stmt = select(OrderItem).where(OrderItem.order_id == order_id)
        return list(session.exec(stmt).all())

    def get_item(self, session: Session, item_id: uuid.UUID) -> OrderItem | None:
        return session.get(OrderItem, item_id)

    def create_items(
        self,
        session: Session,
        items: list[OrderItem],
    ) -> list[OrderItem]:
        session.add_all(items)
        session.flush()
        return items

    def update_item(self, session: Session, item: OrderItem) -> OrderItem:
        session.add(item)
        session.flush()
        return item

    # ---- Order logs ----

    def add_log(self, session: Session, log: OrderLog) -> OrderLog:
        session.add(log)
        session.flush()
        return log

    def list_logs(self, session: Session, order_id: uuid.UUID) -> list[OrderLog]:
        stmt = select(OrderLog).where(OrderLog.order_id == order_id).order_by(OrderLog.id)
        return list(session.exec(stmt).all())

    # ---- Order numbers ----

    def next_daily_sequence(self, session: Session, day: date) -> int:
        """
        Atomically take the next sequence number for `day`.

        The counter row is created with INSERT ... ON CONFLICT DO NOTHING
        and then incremented under a row lock, so concurrent creators
        on the same day serialize instead of reading the same count.
        """
        dialect = session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        session.execute(
            insert(OrderNumberCounter)
            .values(day=day, last_value=0)
            .on_conflict_do_nothing(index_elements=["day"])
        )

        stmt = (
            select(OrderNumberCounter)
            .where(OrderNumberCounter.day == day)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        counter = session.exec(stmt).one()
        counter.last_value += 1
        session.add(counter)
        session.flush()
        return counter.last_value
