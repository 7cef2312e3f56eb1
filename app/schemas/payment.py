# app/schemas/payment.py
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import ConfigDict
from sqlmodel import SQLModel, Field

from app.models.order import PaymentMethod
from app.models.payment import PaymentTransactionStatus

InlinePaymentMethod = Literal["credit_card", "balance"]


class PaymentProcess(SQLModel):
    """
    Payload for paying an order by card or from the account balance.

    Bank transfers are submitted as multipart (receipt file) on their
    own endpoint.
    """

    model_config = ConfigDict(extra="forbid")

    payment_method: InlinePaymentMethod
    card_holder_name: str | None = Field(default=None, max_length=255)


class PaymentResult(SQLModel):
    """
    Outcome of a payment attempt.

    For card payments `token` / `iframe_url` point the client at the
    gateway's hosted page; the result arrives later via callback.
    """

    transaction_id: uuid.UUID
    merchant_oid: str | None
    payment_method: PaymentMethod
    status: PaymentTransactionStatus
    amount: Decimal
    token: str | None = None
    iframe_url: str | None = None
    message: str


class PaymentTransactionRead(SQLModel):
    id: uuid.UUID
    order_id: uuid.UUID
    transaction_id: str | None
    payment_method: PaymentMethod
    amount: Decimal
    currency: str
    status: PaymentTransactionStatus
    card_holder_name: str | None
    masked_card_number: str | None
    bank_name: str | None
    bank_receipt: str | None
    gateway_response: dict[str, Any] | None
    processed_at: datetime | None
    created_at: datetime


class BankTransferReject(SQLModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(min_length=1, max_length=500)
