# app/routers/ledger.py
import uuid

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import require_admin, require_buyer
from app.core.errors import NotFoundError
from app.database import get_session, transaction
from app.models.user import User
from app.schemas.ledger import (
    BalanceDeposit,
    BalanceRead,
    BalanceSet,
    BalanceTransactionRead,
    LedgerCheck,
    StockAdjust,
    StockMovementRead,
    StockReceive,
)
from app.services.registry import balance_ledger, company_repo, stock_ledger

router = APIRouter(tags=["Ledger"])


def _balance_view(session: Session, user_id: uuid.UUID) -> BalanceRead:
    company = company_repo.get_by_user(session, user_id)
    if company is None:
        raise NotFoundError("Company", user_id)
    return BalanceRead(
        user_id=company.user_id,
        company_name=company.company_name,
        balance=company.balance,
    )


# -------- Buyer: own balance --------


@router.get("/me/balance", response_model=BalanceRead)
def get_my_balance(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
):
    return _balance_view(session, current_user.id)


@router.get("/me/balance/transactions", response_model=list[BalanceTransactionRead])
def list_my_balance_transactions(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
    skip: int = 0,
    limit: int = 50,
):
    return balance_ledger.transactions(session, current_user.id, skip, limit)


# -------- Admin: stock --------


@router.post("/admin/stock/{product_id}/adjust", response_model=StockMovementRead)
def adjust_stock(
    product_id: uuid.UUID,
    payload: StockAdjust,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Stock take: set the absolute quantity. The difference is recorded
    as an adjustment movement.
    """
    with transaction(session):
        movement = stock_ledger.adjust(
            session, product_id, payload.new_quantity, payload.reason, admin.id
        )
    session.refresh(movement)
    return movement


@router.post("/admin/stock/{product_id}/in", response_model=StockMovementRead)
def receive_stock(
    product_id: uuid.UUID,
    payload: StockReceive,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    with transaction(session):
        movement = stock_ledger.commit_in(
            session, product_id, payload.quantity, payload.reason, admin.id
        )
    session.refresh(movement)
    return movement


@router.post("/admin/stock/{product_id}/out", response_model=StockMovementRead)
def dispatch_stock(
    product_id: uuid.UUID,
    payload: StockReceive,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    with transaction(session):
        movement = stock_ledger.commit_out(
            session, product_id, payload.quantity, payload.reason, admin.id
        )
    session.refresh(movement)
    return movement


@router.get(
    "/admin/stock/{product_id}/movements",
    response_model=list[StockMovementRead],
    dependencies=[Depends(require_admin)],
)
def list_stock_movements(
    product_id: uuid.UUID,
    session: Session = Depends(get_session),
    skip: int = 0,
    limit: int = 100,
):
    return stock_ledger.movements(session, product_id, skip, limit)


@router.get(
    "/admin/stock/{product_id}/verify",
    response_model=LedgerCheck,
    dependencies=[Depends(require_admin)],
)
def verify_stock(
    product_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    return LedgerCheck(consistent=stock_ledger.verify(session, product_id))


# -------- Admin: balances --------


@router.get(
    "/admin/balances/{user_id}",
    response_model=BalanceRead,
    dependencies=[Depends(require_admin)],
)
def get_balance(
    user_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    return _balance_view(session, user_id)


@router.post("/admin/balances/{user_id}/deposit", response_model=BalanceTransactionRead)
def deposit_balance(
    user_id: uuid.UUID,
    payload: BalanceDeposit,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    with transaction(session):
        txn = balance_ledger.deposit(session, user_id, payload.amount, payload.reason, admin.id)
    session.refresh(txn)
    return txn


@router.post("/admin/balances/{user_id}/set", response_model=BalanceTransactionRead)
def set_balance(
    user_id: uuid.UUID,
    payload: BalanceSet,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Manual correction: set the balance to an absolute value.
    """
    with transaction(session):
        txn = balance_ledger.set_absolute(
            session, user_id, payload.new_balance, payload.reason, admin.id
        )
    session.refresh(txn)
    return txn


@router.get(
    "/admin/balances/{user_id}/transactions",
    response_model=list[BalanceTransactionRead],
    dependencies=[Depends(require_admin)],
)
def list_balance_transactions(
    user_id: uuid.UUID,
    session: Session = Depends(get_session),
    skip: int = 0,
    limit: int = 100,
):
    return balance_ledger.transactions(session, user_id, skip, limit)


@router.get(
    "/admin/balances/{user_id}/verify",
    response_model=LedgerCheck,
    dependencies=[Depends(require_admin)],
)
def verify_balance(
    user_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    return LedgerCheck(consistent=balance_ledger.verify(session, user_id))
