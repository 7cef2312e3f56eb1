# app/routers/payments.py
import uuid

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlmodel import Session

from app.core.auth import require_admin, require_buyer
from app.database import get_session
from app.models.order import PaymentMethod
from app.models.user import User
from app.schemas.payment import (
    BankTransferReject,
    PaymentProcess,
    PaymentResult,
    PaymentTransactionRead,
)
from app.services.payment_service import ReceiptUpload
from app.services.registry import payment_processor as service

router = APIRouter(prefix="/payments", tags=["Payments"])


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


# -------- Buyer endpoints --------


@router.post(
    "/orders/{order_id}",
    response_model=PaymentResult,
)
def pay_order(
    order_id: uuid.UUID,
    payload: PaymentProcess,
    request: Request,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
):
    """
    Pay an order by card or from the account balance.

      - credit_card: returns the gateway token / iframe URL; the result
        arrives through the payment webhook.
      - balance: settles immediately (402 if the balance is too low).
    """
    return service.process(
        session,
        current_user.id,
        order_id,
        PaymentMethod(payload.payment_method),
        user_ip=_client_ip(request),
        card_holder_name=payload.card_holder_name,
    )


@router.post(
    "/orders/{order_id}/bank-transfer",
    response_model=PaymentResult,
)
def submit_bank_transfer(
    order_id: uuid.UUID,
    bank_name: str = Form(...),
    receipt: UploadFile = File(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
):
    """
    Upload a bank transfer receipt (pdf / jpg / png, max 5MB).

    The payment stays pending until an admin approves it.
    """
    content = receipt.file.read()
    upload = ReceiptUpload(
        content=content,
        filename=receipt.filename or "",
        content_type=receipt.content_type or "application/octet-stream",
    )
    return service.process(
        session,
        current_user.id,
        order_id,
        PaymentMethod.BANK_TRANSFER,
        bank_name=bank_name,
        receipt=upload,
    )


@router.get(
    "/{txn_id}",
    response_model=PaymentTransactionRead,
)
def get_my_transaction(
    txn_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
):
    return service.get_transaction(session, txn_id, owner_id=current_user.id)


# -------- Admin endpoints --------


@router.get(
    "/admin/orders/{order_id}",
    response_model=list[PaymentTransactionRead],
    dependencies=[Depends(require_admin)],
)
def list_order_transactions(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    """
    Every payment attempt of an order, oldest first (admin only).
    """
    return service.list_for_order(session, order_id)


@router.post(
    "/{txn_id}/approve",
    response_model=PaymentTransactionRead,
)
def approve_bank_transfer(
    txn_id: uuid.UUID,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Accept a bank transfer: order becomes paid and confirmed.
    """
    return service.approve_bank_transfer(session, txn_id, admin.id)


@router.post(
    "/{txn_id}/reject",
    response_model=PaymentTransactionRead,
)
def reject_bank_transfer(
    txn_id: uuid.UUID,
    payload: BankTransferReject,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Refuse a bank transfer. The order stays payable.
    """
    return service.reject_bank_transfer(session, txn_id, payload.reason, admin.id)
