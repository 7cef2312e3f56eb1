import logging
import uuid
from decimal import Decimal

from sqlmodel import Session

from app.core.errors import NotFoundError, ValidationFailedError
from app.core.money import money
from app.models.company import Company
from app.models.ledger import BalanceTransaction, BalanceTransactionType, LedgerRef
from app.repositories.company_repo import CompanyRepository
from app.repositories.ledger_repo import LedgerRepository

logger = logging.getLogger(__name__)


class BalanceLedger:
    """
    Owns every change to Company.balance.

    Same pattern as StockLedger: lock the company row, validate, write
    the cached balance, append one BalanceTransaction. No commits.
    """

    def __init__(self, company_repo: CompanyRepository, ledger_repo: LedgerRepository):
        self.company_repo = company_repo
        self.ledger_repo = ledger_repo

    def deposit(
        self,
        session: Session,
        user_id: uuid.UUID,
        amount: Decimal,
        reason: str,
        actor_id: uuid.UUID | None = None,
        reference: LedgerRef | None = None,
        kind: BalanceTransactionType = BalanceTransactionType.DEPOSIT,
    ) -> BalanceTransaction:
        amount = self._positive(amount)
        company = self._lock(session, user_id)
        return self._apply(session, company, amount, kind, reason, reference, actor_id)

    def withdraw(
        self,
        session: Session,
        user_id: uuid.UUID,
        amount: Decimal,
        reason: str,
        reference: LedgerRef | None = None,
        actor_id: uuid.UUID | None = None,
        kind: BalanceTransactionType = BalanceTransactionType.WITHDRAW,
    ) -> BalanceTransaction | None:
        """
        Take `amount` from the buyer's balance.

        Returns None (and writes nothing) when the balance is too low;
        the caller decides how to surface that.
        """
        amount = self._positive(amount)
        company = self._lock(session, user_id)
        if company.balance < amount:
            logger.info(
                "Balance withdraw refused for user %s: balance %s, requested %s (actor=%s)",
                user_id, company.balance, amount, actor_id,
            )
            return None
        return self._apply(session, company, -amount, kind, reason, reference, actor_id)

    def set_absolute(
        self,
        session: Session,
        user_id: uuid.UUID,
        new_balance: Decimal,
        reason: str,
        actor_id: uuid.UUID | None = None,
    ) -> BalanceTransaction:
        """Admin correction: set the balance to `new_balance`, recording the difference."""
        new_balance = money(new_balance)
        company = self._lock(session, user_id)
        delta = new_balance - money(company.balance)
        txn = self._apply(
            session, company, delta, BalanceTransactionType.MANUAL_ADJUSTMENT,
            f"Manual balance adjustment: {reason}", None, actor_id,
        )
        txn.adjustment_reason = reason
        return self.ledger_repo.add_balance_transaction(session, txn)

    def has_balance(self, session: Session, user_id: uuid.UUID, amount: Decimal) -> bool:
        company = self.company_repo.get_by_user(session, user_id)
        if company is None:
            return False
        return company.balance >= money(amount)

    def transactions(
        self,
        session: Session,
        user_id: uuid.UUID,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[BalanceTransaction]:
        return self.ledger_repo.list_balance_transactions(session, user_id, skip, limit)

    def verify(self, session: Session, user_id: uuid.UUID) -> bool:
        """Replay the transaction trail against the cached Company.balance."""
        company = self.company_repo.get_by_user(session, user_id)
        if company is None:
            raise NotFoundError("Company", user_id)

        previous_after: Decimal | None = None
        for row in self.ledger_repo.list_balance_transactions(session, user_id):
            if money(row.balance_after) != money(row.balance_before + row.amount):
                return False
            if previous_after is not None and money(row.balance_before) != previous_after:
                return False
            previous_after = money(row.balance_after)

        return previous_after is None or previous_after == money(company.balance)

    # ---- Internals ----

    @staticmethod
    def _positive(amount: Decimal) -> Decimal:
        amount = money(amount)
        if amount <= 0:
            raise ValidationFailedError("Amount must be greater than zero")
        return amount

    def _lock(self, session: Session, user_id: uuid.UUID) -> Company:
        company = self.company_repo.get_by_user_for_update(session, user_id)
        if company is None:
            raise NotFoundError("Company", user_id)
        return company

    def _apply(
        self,
        session: Session,
        company: Company,
        delta: Decimal,
        kind: BalanceTransactionType,
        description: str,
        reference: LedgerRef | None,
        actor_id: uuid.UUID | None,
    ) -> BalanceTransaction:
        before = money(company.balance)
        after = money(before + delta)

        company.balance = after
        self.company_repo.update(session, company)

        txn = BalanceTransaction(
            user_id=company.user_id,
            type=kind,
            amount=money(delta),
            balance_before=before,
            balance_after=after,
            reference_type=reference.kind if reference else None,
            reference_id=reference.id if reference else None,
            description=description,
            created_by=actor_id,
        )
        return self.ledger_repo.add_balance_transaction(session, txn)
