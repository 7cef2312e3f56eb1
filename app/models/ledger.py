"""
Append-only ledgers: stock movements per product and balance
transactions per buyer.

Rows are never updated or deleted. Integer keys give the creation
order, which is the replay order:

    after[n] == before[n] + quantity[n]
    before[n + 1] == after[n]
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlmodel import SQLModel, Field

from app.core.clock import utcnow


class ReferenceKind(str, Enum):
    ORDER = "order"
    PAYMENT_TRANSACTION = "payment_transaction"


@dataclass(frozen=True)
class LedgerRef:
    """Entity that caused a ledger row, e.g. LedgerRef(ReferenceKind.ORDER, order.id)."""

    kind: ReferenceKind
    id: uuid.UUID


class StockMovementType(str, Enum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    RESERVED = "reserved"
    CANCELLED = "cancelled"


class BalanceTransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    ORDER_PAYMENT = "order_payment"
    REFUND = "refund"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class StockMovement(SQLModel, table=True):
    """One signed change to a product's stock count."""

    __tablename__ = "stock_movements"

    id: int | None = Field(default=None, primary_key=True)

    product_id: uuid.UUID = Field(foreign_key="products.id", index=True)

    type: StockMovementType = Field(index=True)

    quantity: int = Field(description="Signed delta; negative for outgoing stock")
    stock_before: int
    stock_after: int

    reference_type: ReferenceKind | None = Field(default=None, index=True)
    reference_id: uuid.UUID | None = Field(default=None, index=True)

    description: str | None = None

    created_by: uuid.UUID | None = Field(default=None, foreign_key="users.id")

    created_at: datetime = Field(default_factory=utcnow, index=True)

    @property
    def reference(self) -> LedgerRef | None:
        if self.reference_type is None or self.reference_id is None:
            return None
        return LedgerRef(self.reference_type, self.reference_id)


class BalanceTransaction(SQLModel, table=True):
    """One signed change to a buyer's account balance."""

    __tablename__ = "balance_transactions"

    id: int | None = Field(default=None, primary_key=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    type: BalanceTransactionType = Field(index=True)

    amount: Decimal = Field(
        max_digits=12,
        decimal_places=2,
        description="Signed; deposits/refunds positive, withdrawals/payments negative",
    )
    balance_before: Decimal = Field(max_digits=12, decimal_places=2)
    balance_after: Decimal = Field(max_digits=12, decimal_places=2)

    reference_type: ReferenceKind | None = Field(default=None, index=True)
    reference_id: uuid.UUID | None = Field(default=None, index=True)

    description: str
    adjustment_reason: str | None = None

    created_by: uuid.UUID | None = Field(default=None, foreign_key="users.id")

    created_at: datetime = Field(default_factory=utcnow, index=True)

    @property
    def reference(self) -> LedgerRef | None:
        if self.reference_type is None or self.reference_id is None:
            return None
        return LedgerRef(self.reference_type, self.reference_id)
