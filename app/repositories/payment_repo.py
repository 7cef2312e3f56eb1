import uuid

from sqlmodel import Session, select

from app.models.payment import PaymentTransaction, PaymentTransactionStatus


class PaymentRepository:
    """Data access for payment attempts. No commits here."""

    def get_by_id(self, session: Session, txn_id: uuid.UUID) -> PaymentTransaction | None:
        return session.get(PaymentTransaction, txn_id)

    def get_by_transaction_id_for_update(
        self,
        session: Session,
        transaction_id: str,
    ) -> PaymentTransaction | None:
        """Locked lookup by external id, so duplicate callbacks serialize."""
        stmt = (
            select(PaymentTransaction)
            .where(PaymentTransaction.transaction_id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(stmt).first()

    def get_for_update(self, session: Session, txn_id: uuid.UUID) -> PaymentTransaction | None:
        stmt = (
            select(PaymentTransaction)
            .where(PaymentTransaction.id == txn_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(stmt).first()

    def list_for_order(self, session: Session, order_id: uuid.UUID) -> list[PaymentTransaction]:
        stmt = (
            select(PaymentTransaction)
            .where(PaymentTransaction.order_id == order_id)
            .order_by(PaymentTransaction.created_at)
        )
        return list(session.exec(stmt).all())

    def list_pending_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[PaymentTransaction]:
        stmt = select(PaymentTransaction).where(
            PaymentTransaction.order_id == order_id,
            PaymentTransaction.status == PaymentTransactionStatus.PENDING,
        )
        return list(session.exec(stmt).all())

    def create(self, session: Session, txn: PaymentTransaction) -> PaymentTransaction:
        session.add(txn)
        session.flush()
        return txn

    def update(self, session: Session, txn: PaymentTransaction) -> PaymentTransaction:
        session.add(txn)
        session.flush()
        return txn
