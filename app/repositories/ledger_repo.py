import uuid

from sqlmodel import Session, SQLModel, select

from app.models.ledger import (
    BalanceTransaction,
    LedgerRef,
    ReferenceKind,
    StockMovement,
)
from app.models.order import Order
from app.models.payment import PaymentTransaction


class LedgerRepository:
    """
    Append-only access to stock movements and balance transactions.

    There are intentionally no update/delete methods.
    """

    # ---- Stock movements ----

    def add_movement(self, session: Session, movement: StockMovement) -> StockMovement:
        session.add(movement)
        session.flush()
        return movement

    def list_movements(
        self,
        session: Session,
        product_id: uuid.UUID,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[StockMovement]:
        stmt = (
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .order_by(StockMovement.id)
            .offset(skip)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.exec(stmt).all())

    def list_movements_for_reference(
        self,
        session: Session,
        ref: LedgerRef,
    ) -> list[StockMovement]:
        stmt = (
            select(StockMovement)
            .where(
                StockMovement.reference_type == ref.kind,
                StockMovement.reference_id == ref.id,
            )
            .order_by(StockMovement.id)
        )
        return list(session.exec(stmt).all())

    # ---- Balance transactions ----

    def add_balance_transaction(
        self,
        session: Session,
        txn: BalanceTransaction,
    ) -> BalanceTransaction:
        session.add(txn)
        session.flush()
        return txn

    def list_balance_transactions(
        self,
        session: Session,
        user_id: uuid.UUID,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[BalanceTransaction]:
        stmt = (
            select(BalanceTransaction)
            .where(BalanceTransaction.user_id == user_id)
            .order_by(BalanceTransaction.id)
            .offset(skip)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.exec(stmt).all())

    # ---- References ----

    def resolve_reference(self, session: Session, ref: LedgerRef) -> SQLModel | None:
        """Look up the entity a ledger row points at, one explicit branch per kind."""
        if ref.kind == ReferenceKind.ORDER:
            return session.get(Order, ref.id)
        if ref.kind == ReferenceKind.PAYMENT_TRANSACTION:
            return session.get(PaymentTransaction, ref.id)
        raise ValueError(f"Unknown reference kind: {ref.kind}")
