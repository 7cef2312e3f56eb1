import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint
from sqlmodel import SQLModel, Field

from app.core.clock import utcnow


class Product(SQLModel, table=True):
    """
    Catalog entry.

    `stock_quantity` is the visible stock; every change goes through
    StockLedger, which appends a StockMovement in the same transaction.
    """

    __tablename__ = "products"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    sku: str = Field(
        max_length=100,
        unique=True,
        index=True,
    )

    name: str = Field(
        max_length=255,
        index=True,
        description="Display name",
    )

    base_price: Decimal = Field(
        max_digits=12,
        decimal_places=2,
        gt=0,
        description="List price before VAT",
    )

    vat_rate: Decimal = Field(
        default=Decimal("20.00"),
        max_digits=5,
        decimal_places=2,
        description="VAT percentage, e.g. 20.00",
    )

    currency: str = Field(default="TRY", max_length=3)

    stock_quantity: int = Field(
        default=0,
        description="Units currently available",
    )

    min_order_quantity: int = Field(default=1, ge=1)

    weight: Decimal | None = Field(
        default=None,
        max_digits=10,
        decimal_places=3,
        description="Unit weight in kg",
    )

    is_active: bool = Field(
        default=True,
        index=True,
    )

    created_at: datetime = Field(
        default_factory=utcnow,
        description="Creation timestamp (UTC)",
    )


class CustomPrice(SQLModel, table=True):
    """
    Negotiated price override for a product.

    Scoped to exactly one of a user or a customer group, optionally
    bounded by minimum quantity and an inclusive date window
    (null bounds are open).
    """

    __tablename__ = "custom_prices"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL AND group_id IS NOT NULL) "
            "OR (user_id IS NOT NULL AND group_id IS NULL)",
            name="ck_custom_prices_single_scope",
        ),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    product_id: uuid.UUID = Field(foreign_key="products.id", index=True)
    user_id: uuid.UUID | None = Field(default=None, foreign_key="users.id", index=True)
    group_id: uuid.UUID | None = Field(
        default=None,
        foreign_key="customer_groups.id",
        index=True,
    )

    price: Decimal = Field(max_digits=12, decimal_places=2, gt=0)
    min_quantity: int = Field(default=1, ge=1)

    start_date: date | None = None
    end_date: date | None = None

    created_at: datetime = Field(default_factory=utcnow)
