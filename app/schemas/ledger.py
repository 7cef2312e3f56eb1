# app/schemas/ledger.py
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import ConfigDict
from sqlmodel import SQLModel, Field

from app.models.ledger import BalanceTransactionType, ReferenceKind, StockMovementType


# ---- Stock ----


class StockAdjust(SQLModel):
    """Admin stock take: set an absolute quantity."""

    model_config = ConfigDict(extra="forbid")

    new_quantity: int = Field(ge=0)
    reason: str = Field(min_length=1, max_length=500)


class StockReceive(SQLModel):
    """Admin goods-in / goods-out with a positive quantity."""

    model_config = ConfigDict(extra="forbid")

    quantity: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)


class StockMovementRead(SQLModel):
    id: int
    product_id: uuid.UUID
    type: StockMovementType
    quantity: int
    stock_before: int
    stock_after: int
    reference_type: ReferenceKind | None
    reference_id: uuid.UUID | None
    description: str | None
    created_by: uuid.UUID | None
    created_at: datetime


# ---- Balance ----


class BalanceDeposit(SQLModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    reason: str = Field(min_length=1, max_length=500)


class BalanceSet(SQLModel):
    model_config = ConfigDict(extra="forbid")

    new_balance: Decimal = Field(max_digits=12, decimal_places=2)
    reason: str = Field(min_length=1, max_length=500)


class BalanceTransactionRead(SQLModel):
    id: int
    user_id: uuid.UUID
    type: BalanceTransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference_type: ReferenceKind | None
    reference_id: uuid.UUID | None
    description: str
    adjustment_reason: str | None
    created_by: uuid.UUID | None
    created_at: datetime


class BalanceRead(SQLModel):
    user_id: uuid.UUID
    company_name: str
    balance: Decimal


class LedgerCheck(SQLModel):
    """Result of replaying a ledger against its cached value."""

    consistent: bool
