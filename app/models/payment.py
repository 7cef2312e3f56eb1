import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field

from app.core.clock import utcnow
from app.models.order import PaymentMethod


class PaymentTransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentTransaction(SQLModel, table=True):
    """
    One attempt to collect payment for an order.

    An order may have many attempts (retries) but at most one with
    status=success. Attempts are kept as history and never deleted.
    """

    __tablename__ = "payment_transactions"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)

    transaction_id: str | None = Field(
        default=None,
        max_length=100,
        unique=True,
        index=True,
        description="External id (merchant_oid) for gateway correlation",
    )

    payment_method: PaymentMethod = Field(index=True)

    amount: Decimal = Field(max_digits=12, decimal_places=2)
    currency: str = Field(default="TRY", max_length=3)

    status: PaymentTransactionStatus = Field(
        default=PaymentTransactionStatus.PENDING,
        index=True,
    )

    # Credit card
    card_holder_name: str | None = None
    masked_card_number: str | None = Field(default=None, max_length=20)

    # Bank transfer
    bank_name: str | None = Field(default=None, max_length=100)
    bank_receipt: str | None = Field(default=None, description="Receipt object path")

    gateway_response: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    processed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
